"""Command-line layer (Typer + Rich).

Commands only parse flags, call `TrackingClient` and print JSON.
"""
