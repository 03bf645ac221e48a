"""
Versioned SQL migrations → checksum verification → transactional apply

A deterministic, auditable schema migration runner that discovers ordered
SQL migration files, verifies their integrity against an append-only ledger,
and applies pending ones exactly once.
"""

__version__ = "0.1.0"
