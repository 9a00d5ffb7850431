"""Shared helpers: error taxonomy, retry, and deadline racing."""
