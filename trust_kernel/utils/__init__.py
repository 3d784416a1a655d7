"""Utility functions for the trust kernel."""
