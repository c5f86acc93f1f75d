"""Core: configuration, domain models, errors and services.

The core knows nothing about Typer; adapters handle HTTP and disk I/O.
"""
