"""CLI helpers and formatters."""
