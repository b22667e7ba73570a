"""Pattern learning: embeddings, storage, extraction, scoring, categorization, cleanup."""
