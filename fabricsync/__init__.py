"""FabricSync: supplier stock and price ingestion for textile catalogs."""

__version__ = "0.1.0"
