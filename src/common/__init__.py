"""
Common utilities for the FHE payroll client.

Modules:
- ledger: async ledger gateway client (records, ciphertext handles, transactions)
- compute: async confidential-compute client (init, encrypt, verifiable decryption)
- rate_limiter: sliding-window limiter shared by both clients
- status / oplog: transient status board and bounded operation log
- stats / report: summary metrics over a record snapshot and their text rendering
- config / errors / coerce: settings, error taxonomy and wire-value coercion
"""

__all__ = [
    "ledger",
    "compute",
    "rate_limiter",
    "status",
    "oplog",
    "stats",
    "report",
    "config",
    "errors",
    "coerce",
]
