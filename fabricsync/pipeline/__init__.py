"""Supplier ingestion pipeline.

Fetch, parse and reconcile supplier stock and price lists, one supplier run
at a time per supplier.
"""
