"""Change log entry models and record conversion helpers."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

FIELD_ADDED = "Added"
FIELD_DELETED = "Deleted"
FIELD_DISPOSED = "Disposed"
FIELD_DISPOSITION_UNDONE = "Disposition Undone"
FIELD_PRICE_HISTORY_DELETE = "priceHistoryDelete"

TYPE_ITEM_ADD = "item-add"
TYPE_ITEM_EDIT = "item-edit"
TYPE_ITEM_DELETE = "item-delete"
TYPE_SYNC_MARKER = "sync-marker"

SCOPE_INVENTORY = "inventory"

# Item fields compared by ChangeLogService.record_field_diffs. Anything else
# an item carries is never diffed.
TRACKED_FIELDS = (
    "date",
    "type",
    "metal",
    "name",
    "qty",
    "weight",
    "price",
    "marketValue",
    "purchaseLocation",
    "notes",
)


class ChangeLogError(Exception):
    """Base exception for change log errors."""


@dataclass
class LogEntry(ABC):
    """Fields shared by every change log entry.

    ``raw_values`` holds the ``(oldValue, newValue)`` pair exactly as read from
    a legacy record whose values were stored as strings; it is written back
    unchanged so loading and saving the log never rewrites old records.
    """

    timestamp: int
    item_name: str = ""
    idx: int = -1
    undone: bool = False
    scope: Optional[str] = None
    item_key: Optional[str] = None
    kind: Optional[str] = None
    raw_values: Optional[Tuple[Any, Any]] = field(default=None, repr=False, compare=False)

    @property
    @abstractmethod
    def field_tag(self) -> str:
        """Value of the persisted ``field`` key."""

    @abstractmethod
    def _values(self) -> Tuple[Any, Any]:
        """Return the persisted ``(oldValue, newValue)`` pair."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert the entry to its persisted record."""
        old_value, new_value = self.raw_values if self.raw_values is not None else self._values()
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "itemName": self.item_name,
            "field": self.field_tag,
            "oldValue": deepcopy(old_value),
            "newValue": deepcopy(new_value),
            "idx": self.idx,
            "undone": self.undone,
        }
        # Legacy entries never carried these keys.
        if self.scope is not None:
            data["scope"] = self.scope
        if self.item_key is not None:
            data["itemKey"] = self.item_key
        if self.kind is not None:
            data["type"] = self.kind
        return data


@dataclass
class FieldEdit(LogEntry):
    """A single field of an item changed value."""

    field_name: str = ""
    old_value: Any = None
    new_value: Any = None

    @property
    def field_tag(self) -> str:
        return self.field_name

    def _values(self) -> Tuple[Any, Any]:
        return self.old_value, self.new_value


@dataclass
class ItemAdd(LogEntry):
    """An item was added to the inventory."""

    snapshot: Dict[str, Any] = field(default_factory=dict)

    @property
    def field_tag(self) -> str:
        return FIELD_ADDED

    def _values(self) -> Tuple[Any, Any]:
        return None, self.snapshot


@dataclass
class ItemDelete(LogEntry):
    """An item was removed from the inventory."""

    snapshot: Dict[str, Any] = field(default_factory=dict)

    @property
    def field_tag(self) -> str:
        return FIELD_DELETED

    def _values(self) -> Tuple[Any, Any]:
        return self.snapshot, None


@dataclass
class DispositionChange(LogEntry):
    """An item left active inventory, or was restored to it."""

    action: str = FIELD_DISPOSED
    old_disposition: Optional[Dict[str, Any]] = None
    new_disposition: Optional[Dict[str, Any]] = None

    @property
    def field_tag(self) -> str:
        return self.action

    def _values(self) -> Tuple[Any, Any]:
        return self.old_disposition, self.new_disposition


@dataclass
class PriceHistoryDelete(LogEntry):
    """A retail price record was removed from an item's price history."""

    item_uuid: str = ""
    record: Dict[str, Any] = field(default_factory=dict)

    @property
    def field_tag(self) -> str:
        return FIELD_PRICE_HISTORY_DELETE

    def _values(self) -> Tuple[Any, Any]:
        return {"uuid": self.item_uuid, "entry": self.record}, None


@dataclass
class SyncMarker(LogEntry):
    """Checkpoint recording a successful synchronization."""

    sync_id: str = ""
    kind: Optional[str] = TYPE_SYNC_MARKER

    @property
    def field_tag(self) -> str:
        return ""

    def _values(self) -> Tuple[Any, Any]:
        return None, None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": TYPE_SYNC_MARKER,
            "syncId": self.sync_id,
            "timestamp": self.timestamp,
        }


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return deepcopy(value)


def parse_snapshot(value: Any) -> Dict[str, Any]:
    """Return an item snapshot from a stored value.

    Snapshots written by older versions are JSON strings. A value that does
    not decode to an object restores as an empty record.
    """
    if value is None or value == "":
        return {}
    try:
        decoded = _decode_json(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"Instantánea de artículo ilegible, se usará un registro vacío: {e}")
        return {}
    if not isinstance(decoded, dict):
        logger.warning("Instantánea de artículo con formato inesperado: %r", value)
        return {}
    return decoded


def parse_disposition(value: Any) -> Optional[Dict[str, Any]]:
    """Return a disposition record from a stored value, or ``None``."""
    if value is None or value == "":
        return None
    try:
        decoded = _decode_json(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"Disposición ilegible: {e}")
        return None
    return decoded if isinstance(decoded, dict) else None


def _as_index(value: Any) -> int:
    if isinstance(value, bool):
        return -1
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


def entry_from_dict(data: Dict[str, Any]) -> LogEntry:
    """Create the matching entry variant from a persisted record."""
    if data.get("type") == TYPE_SYNC_MARKER:
        return SyncMarker(
            timestamp=int(data.get("timestamp") or 0),
            sync_id=str(data.get("syncId") or ""),
        )

    common: Dict[str, Any] = {
        "timestamp": int(data.get("timestamp") or 0),
        "item_name": data.get("itemName") or "",
        "idx": _as_index(data.get("idx")),
        "undone": bool(data.get("undone", False)),
        "scope": data.get("scope"),
        "item_key": data.get("itemKey"),
        "kind": data.get("type"),
    }
    tag = data.get("field")
    old_value = data.get("oldValue")
    new_value = data.get("newValue")
    legacy_raw = None
    if isinstance(old_value, str) or isinstance(new_value, str):
        legacy_raw = (old_value, new_value)

    if tag == FIELD_DELETED:
        return ItemDelete(snapshot=parse_snapshot(old_value), raw_values=legacy_raw, **common)
    if tag == FIELD_ADDED:
        return ItemAdd(snapshot=parse_snapshot(new_value), raw_values=legacy_raw, **common)
    if tag in (FIELD_DISPOSED, FIELD_DISPOSITION_UNDONE):
        return DispositionChange(
            action=tag,
            old_disposition=parse_disposition(old_value),
            new_disposition=parse_disposition(new_value),
            raw_values=legacy_raw,
            **common,
        )
    if tag == FIELD_PRICE_HISTORY_DELETE:
        payload = parse_snapshot(old_value)
        record = payload.get("entry")
        return PriceHistoryDelete(
            item_uuid=str(payload.get("uuid") or ""),
            record=dict(record) if isinstance(record, dict) else {},
            raw_values=legacy_raw,
            **common,
        )
    return FieldEdit(
        field_name=str(tag or ""),
        old_value=old_value,
        new_value=new_value,
        **common,
    )
