"""Infrastructure adapters (database, queue)."""
