"""
Page synthesis pipeline.

- page_export: recognize captured pages, checkpointing each one
- searchable_pdf: page images with an invisible, searchable text layer
"""

from pipeline.page_export import ExportSummary, PageExportWorkflow
from pipeline.searchable_pdf import SearchablePdfWriter, TextLayerWriter

__all__ = [
    "ExportSummary",
    "PageExportWorkflow",
    "SearchablePdfWriter",
    "TextLayerWriter",
]
