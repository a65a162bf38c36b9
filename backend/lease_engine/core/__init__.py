"""Core infrastructure: settings, database, clock, errors, identity."""
