"""Auxiliary collections touched by undo/redo: catalog map and price history."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from .repositories import StorageGateway

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_MAP_KEY = "catalogMap"
DEFAULT_PRICE_HISTORY_KEY = "itemPriceHistory"


class CatalogMap:
    """Serial number -> external catalog id cross-reference."""

    def __init__(self, gateway: StorageGateway, key: str = DEFAULT_CATALOG_MAP_KEY) -> None:
        self._gateway = gateway
        self._key = key
        self._entries: Dict[str, Any] = {}

    def load(self) -> None:
        stored = self._gateway.load(self._key, {})
        if not isinstance(stored, dict):
            logger.warning("Mapa de catálogo almacenado con formato inesperado; se ignora")
            stored = {}
        self._entries = {str(serial): value for serial, value in stored.items()}

    def save(self) -> None:
        self._gateway.save(self._key, self._entries)

    def get(self, serial: str) -> Optional[Any]:
        return self._entries.get(str(serial))

    def __contains__(self, serial: object) -> bool:
        return str(serial) in self._entries

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._entries)

    def sync_item(self, item: Optional[Mapping[str, Any]]) -> None:
        """Point the item's serial at its current catalog id."""
        if not item or not item.get("serial"):
            return
        self._entries[str(item["serial"])] = item.get("numistaId") or ""

    def drop(self, serial: Any) -> None:
        if serial:
            self._entries.pop(str(serial), None)


def _ts_of(record: Mapping[str, Any]) -> Any:
    return record.get("ts") or 0


class PriceHistoryStore:
    """Per-item retail price records, kept sorted by ``ts``."""

    def __init__(self, gateway: StorageGateway, key: str = DEFAULT_PRICE_HISTORY_KEY) -> None:
        self._gateway = gateway
        self._key = key
        self._histories: Dict[str, List[Dict[str, Any]]] = {}

    def load(self) -> None:
        """Load histories; malformed items and records are skipped."""
        stored = self._gateway.load(self._key, {})
        histories: Dict[str, List[Dict[str, Any]]] = {}
        if isinstance(stored, dict):
            for uuid, records in stored.items():
                if isinstance(uuid, str) and isinstance(records, list):
                    histories[uuid] = [r for r in records if isinstance(r, dict)]
        else:
            logger.warning("Historial de precios almacenado con formato inesperado; se ignora")
        self._histories = histories

    def save(self) -> None:
        self._gateway.save(self._key, self._histories)

    def records_for(self, uuid: str) -> List[Dict[str, Any]]:
        return list(self._histories.get(uuid, []))

    def restore_record(self, uuid: str, record: Dict[str, Any]) -> None:
        """Put ``record`` back into the history of ``uuid``."""
        history = self._histories.setdefault(uuid, [])
        history.append(record)
        history.sort(key=_ts_of)

    def remove_record(self, uuid: str, ts: Any) -> int:
        """Remove every record of ``uuid`` stamped ``ts``; return how many."""
        history = self._histories.get(uuid)
        if not history:
            return 0
        kept = [record for record in history if record.get("ts") != ts]
        removed = len(history) - len(kept)
        if kept:
            self._histories[uuid] = kept
        else:
            del self._histories[uuid]
        return removed
