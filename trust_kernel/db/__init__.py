"""Database infrastructure for the trust kernel."""
