"""
Apply Package - merge accepted research into the catalog.

This package provides:
- merge: dotted-path partial updates with provenance and tag refresh
"""

from model_enrichment.apply.merge import (
    EnrichmentMerger,
    build_update,
    merge_sources,
)


__all__ = [
    "EnrichmentMerger",
    "build_update",
    "merge_sources",
]
