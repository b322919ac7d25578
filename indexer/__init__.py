"""Document store, models and fuzzy search index."""
