"""DuckDB storage: schema, bulk writer, queries and export."""

from .batch_writer import batch_add, partition
from .database import connect, ensure_schema, tune_for_bulk_load
from .export import export_workspace

__all__ = [
    "batch_add",
    "connect",
    "ensure_schema",
    "export_workspace",
    "partition",
    "tune_for_bulk_load",
]
