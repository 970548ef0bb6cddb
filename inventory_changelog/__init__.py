"""Change tracking and undo/redo core for a collectibles inventory."""

from .identity import compute_identity
from .inventory import InventoryService
from .manifest import extract_manifest
from .models import (
    ChangeLogError,
    DispositionChange,
    FieldEdit,
    ItemAdd,
    ItemDelete,
    LogEntry,
    PriceHistoryDelete,
    SyncMarker,
    entry_from_dict,
)
from .repositories import JsonFileStore, StorageError, StorageLoadError, StorageSaveError
from .services import ChangeLogEvent, ChangeLogEventType, ChangeLogService
from .stores import CatalogMap, PriceHistoryStore

__all__ = [
    "compute_identity",
    "InventoryService",
    "extract_manifest",
    "ChangeLogError",
    "LogEntry",
    "FieldEdit",
    "ItemAdd",
    "ItemDelete",
    "DispositionChange",
    "PriceHistoryDelete",
    "SyncMarker",
    "entry_from_dict",
    "JsonFileStore",
    "StorageError",
    "StorageLoadError",
    "StorageSaveError",
    "ChangeLogService",
    "ChangeLogEvent",
    "ChangeLogEventType",
    "CatalogMap",
    "PriceHistoryStore",
]
