"""Domain models and entities.

Only the structures this client produces; remote trackings and couriers
are passed through as plain dicts.
"""
