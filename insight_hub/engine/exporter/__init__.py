"""Document exporter implementations."""

from .file_exporter import FileDocumentExporter

__all__ = ["FileDocumentExporter"]
