"""Hybrid BM25 + fuzzy retrieval with quote-grounded, two-stage answering."""
