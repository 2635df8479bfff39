"""insight-hub: channel ingestion, deduplication and enrichment pipeline."""

__version__ = "0.3.0"

__all__ = ["__version__"]
