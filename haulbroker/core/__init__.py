"""Core application primitives (settings, database, error taxonomy)."""
