"""Shopper intent interpretation and content retrieval for generated pages."""
