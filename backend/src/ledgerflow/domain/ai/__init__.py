"""Embedding provider contract used by the similarity tier."""
