"""Pure domain types for the trust kernel (no I/O)."""
