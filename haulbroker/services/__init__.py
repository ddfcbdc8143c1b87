"""Domain services for the allocation engine."""
