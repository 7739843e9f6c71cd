"""Shell adapters — the command runner and generic command adapters."""
