"""Storage package for extraction results.

Exports the document builder and the file/memory sinks.
"""

from .results_export import (
    ExcelResultsSink,
    JsonFileSink,
    MemorySink,
    build_export_document,
    sink_for_path,
)

__all__ = [
    "ExcelResultsSink",
    "JsonFileSink",
    "MemorySink",
    "build_export_document",
    "sink_for_path",
]
