"""Mutation commands issued against the inventory collection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class ApplyFieldValue:
    """Write ``value`` into ``field_name`` of the item at ``position``."""

    position: int
    field_name: str
    value: Any


@dataclass(frozen=True)
class InsertRecord:
    """Insert ``record`` at ``position``; out-of-range positions append."""

    position: int
    record: Dict[str, Any]


@dataclass(frozen=True)
class RemoveRecord:
    position: int


@dataclass(frozen=True)
class SetDisposition:
    """Replace the disposition of the item at ``position`` (``None`` clears it)."""

    position: int
    disposition: Optional[Dict[str, Any]]


InventoryCommand = Union[ApplyFieldValue, InsertRecord, RemoveRecord, SetDisposition]
