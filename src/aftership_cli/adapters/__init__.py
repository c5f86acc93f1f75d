"""Adapters: pure I/O (HTTP transport, on-disk cache)."""
