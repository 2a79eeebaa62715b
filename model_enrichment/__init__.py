"""Model catalog enrichment engine."""

__version__ = "0.1.0"
