"""Inventory collection access for the change log core.

The inventory itself is an ordered list of item dicts shared with the rest
of the application. ``InventoryService`` owns the list reference, keeps an
identity index over it and applies the mutation commands emitted while
undoing or redoing logged changes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Iterator, List, Optional

from .commands import (
    ApplyFieldValue,
    InsertRecord,
    InventoryCommand,
    RemoveRecord,
    SetDisposition,
)
from .identity import IDENTITY_FIELDS, compute_identity
from .repositories import StorageGateway

logger = logging.getLogger(__name__)

DEFAULT_INVENTORY_KEY = "metalInventory"

_UNSET: Any = object()


class InventoryService:
    """Owns the inventory list, its identity index and command execution."""

    def __init__(
        self,
        gateway: StorageGateway,
        key: str = DEFAULT_INVENTORY_KEY,
        items: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self._gateway = gateway
        self._key = key
        self._items: List[Dict[str, Any]] = items if items is not None else []
        self._index: Dict[str, List[int]] = defaultdict(list)
        self._handlers: Dict[type, Callable[[Any], Optional[Dict[str, Any]]]] = {
            ApplyFieldValue: self._apply_field_value,
            InsertRecord: self._insert_record,
            RemoveRecord: self._remove_record,
            SetDisposition: self._set_disposition,
        }
        self.rebuild_index()

    @property
    def items(self) -> List[Dict[str, Any]]:
        """The live inventory list (not a copy)."""
        return self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self._items)

    def get(self, position: int) -> Optional[Dict[str, Any]]:
        """Return the item at ``position`` or ``None`` when out of range."""
        if 0 <= position < len(self._items):
            return self._items[position]
        return None

    def load(self) -> None:
        """Replace the in-memory list with the persisted inventory."""
        stored = self._gateway.load(self._key, [])
        if not isinstance(stored, list):
            logger.warning(f"Inventario almacenado con formato inesperado: {type(stored).__name__}")
            stored = []
        self._items[:] = [item for item in stored if isinstance(item, dict)]
        self.rebuild_index()

    def save(self) -> None:
        self._gateway.save(self._key, self._items)

    def rebuild_index(self) -> None:
        """Rebuild the identity -> positions index from the current list."""
        self._index.clear()
        for position, item in enumerate(self._items):
            self._index[compute_identity(item)].append(position)

    def _indexed_positions(self, item_key: str) -> List[int]:
        positions = self._index.get(item_key, [])
        valid = all(
            position < len(self._items)
            and compute_identity(self._items[position]) == item_key
            for position in positions
        )
        if positions and valid:
            return list(positions)
        # The list may have been changed by code that does not go through
        # this service; reindex before concluding the key is gone.
        self.rebuild_index()
        return list(self._index.get(item_key, []))

    def position_of(self, item: Optional[Dict[str, Any]]) -> int:
        """Return the current position of ``item``, or -1.

        The same object is preferred; otherwise the first item sharing its
        identity key is used.
        """
        if item is None:
            return -1
        for position, candidate in enumerate(self._items):
            if candidate is item:
                return position
        positions = self._indexed_positions(compute_identity(item))
        return positions[0] if positions else -1

    def find(
        self,
        item_key: str,
        *,
        preferred: int = -1,
        field_name: Optional[str] = None,
        keyed_value: Any = _UNSET,
    ) -> Optional[int]:
        """Resolve ``item_key`` to a current position.

        When ``field_name`` is an identity field, items whose key would equal
        ``item_key`` once ``field_name`` is set to ``keyed_value`` also match.
        Among several matches ``preferred`` wins when it is one of them.
        """
        if not item_key:
            return None
        matches = self._indexed_positions(item_key)
        if not matches and field_name in IDENTITY_FIELDS and keyed_value is not _UNSET:
            for position, item in enumerate(self._items):
                candidate = dict(item)
                candidate[field_name] = keyed_value
                if compute_identity(candidate) == item_key:
                    matches.append(position)
        if not matches:
            return None
        if preferred in matches:
            return preferred
        return matches[0]

    def execute(self, command: InventoryCommand) -> Optional[Dict[str, Any]]:
        """Apply a mutation command and return the affected item."""
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Comando de inventario no soportado: {command!r}")
        logger.debug(f"Ejecutando {command!r}")
        return handler(command)

    def _require(self, position: int) -> Dict[str, Any]:
        item = self.get(position)
        if item is None:
            raise IndexError(f"Posición de inventario fuera de rango: {position}")
        return item

    def _apply_field_value(self, command: ApplyFieldValue) -> Dict[str, Any]:
        item = self._require(command.position)
        item[command.field_name] = command.value
        if command.field_name in IDENTITY_FIELDS:
            self.rebuild_index()
        return item

    def _insert_record(self, command: InsertRecord) -> Dict[str, Any]:
        position = command.position
        if position < 0 or position > len(self._items):
            position = len(self._items)
        self._items.insert(position, command.record)
        self.rebuild_index()
        return command.record

    def _remove_record(self, command: RemoveRecord) -> Optional[Dict[str, Any]]:
        if self.get(command.position) is None:
            return None
        removed = self._items.pop(command.position)
        self.rebuild_index()
        return removed

    def _set_disposition(self, command: SetDisposition) -> Dict[str, Any]:
        item = self._require(command.position)
        item["disposition"] = command.disposition
        return item
