"""Canonical value normalization: prices, categories, keys, text and dates."""
