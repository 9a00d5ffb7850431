"""Persistence and polling for asynchronous backend jobs."""
