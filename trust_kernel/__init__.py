"""
Trust Kernel - client trust (IOLTA) subledger.

Tracks client funds held in a pooled trust bank account:
- Per-client ledgers with denormalized running balances
- Staging queue for imported bank statement lines
- Posting, matching and three-way reconciliation
- Hash-chained audit trail written with every mutation
"""

__version__ = "0.1.0"
