"""Retrieval-augmented generation: multi-query research and the bounded retrieval graph."""
