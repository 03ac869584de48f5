"""
Domain Module

Storage-boundary helpers: snapshot export/import and JSON encoding.
"""

from .serialization import (
    FORMAT_VERSION, SnapshotFormatError, StrictSnapshotEncoder,
    export_snapshot, import_snapshot, dumps, loads,
)

__all__ = [
    "FORMAT_VERSION", "SnapshotFormatError", "StrictSnapshotEncoder",
    "export_snapshot", "import_snapshot", "dumps", "loads",
]
