"""Observability — logging setup and health checks."""
