"""Insight synthesis over fetched data."""
