"""Structured logging and request metrics."""
