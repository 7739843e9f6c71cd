"""Persistence — the append-only run log."""
