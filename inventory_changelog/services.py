from typing import Any, Callable, Dict, List, Optional, Protocol, Set
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from collections import defaultdict
from enum import Enum, auto
import logging

from .commands import ApplyFieldValue, InsertRecord, RemoveRecord, SetDisposition
from .identity import compute_identity
from .inventory import InventoryService
from .manifest import extract_manifest, last_sync_marker
from .models import (
    FIELD_DISPOSED,
    FIELD_DISPOSITION_UNDONE,
    SCOPE_INVENTORY,
    TRACKED_FIELDS,
    TYPE_ITEM_ADD,
    TYPE_ITEM_DELETE,
    TYPE_ITEM_EDIT,
    DispositionChange,
    FieldEdit,
    ItemAdd,
    ItemDelete,
    LogEntry,
    PriceHistoryDelete,
    SyncMarker,
    entry_from_dict,
)
from .prompts import ConfirmationPrompt
from .repositories import StorageGateway
from .stores import CatalogMap, PriceHistoryStore
from .time_utils import epoch_ms

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_LOG_KEY = "changeLog"

CLEAR_PROMPT_MESSAGE = "Clear change log?"
CLEAR_PROMPT_TITLE = "Activity Log"


class ChangeLogEventType(Enum):
    """Event types for change log operations."""
    RECORDED = auto()
    TOGGLED = auto()
    CLEARED = auto()


@dataclass
class ChangeLogEvent:
    """Event data for change log operations."""
    event_type: ChangeLogEventType
    entry: Optional[LogEntry] = None
    log_index: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)


class ChangeLogEventHandler(Protocol):
    """Protocol for change log event handlers (table refreshes and the like)."""

    def handle_event(self, event: ChangeLogEvent) -> None:
        """Handle a change log event."""
        ...


class ChangeLogService:
    """Owns the change log: records mutations, undoes/redoes them, exports manifests.

    Inventory records are reached through ``InventoryService`` only; every
    change to the inventory made while toggling an entry is issued as a
    command. The catalog map and the price history store are optional; when
    one is missing the parts of a toggle that need it are skipped.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        inventory: InventoryService,
        catalog_map: Optional[CatalogMap] = None,
        price_history: Optional[PriceHistoryStore] = None,
        prompt: Optional[ConfirmationPrompt] = None,
        key: str = DEFAULT_CHANGE_LOG_KEY,
        clock: Callable[[], int] = epoch_ms,
    ):
        """
        Initialize the ChangeLogService.
        """
        self._gateway = gateway
        self._key = key
        self.inventory = inventory
        self.catalog_map = catalog_map
        self.price_history = price_history
        self.prompt = prompt
        self._clock = clock
        self._entries: List[LogEntry] = []
        self._event_handlers: Dict[ChangeLogEventType,
                                   Set[ChangeLogEventHandler]] = defaultdict(set)
        self._toggle_handlers: Dict[type, Callable[[Any], bool]] = {
            FieldEdit: self._toggle_field_edit,
            ItemAdd: self._toggle_item_add,
            ItemDelete: self._toggle_item_delete,
            DispositionChange: self._toggle_disposition,
            PriceHistoryDelete: self._toggle_price_history_delete,
        }

    # ------------------------------------------------------------------
    # Log access and persistence
    # ------------------------------------------------------------------

    @property
    def entries(self) -> List[LogEntry]:
        """Entries in append order."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, log_index: int) -> Optional[LogEntry]:
        if 0 <= log_index < len(self._entries):
            return self._entries[log_index]
        return None

    def load(self) -> None:
        """Load the persisted log, skipping records that cannot be read."""
        stored = self._gateway.load(self._key, [])
        if not isinstance(stored, list):
            logger.warning(f"Registro de cambios con formato inesperado: {type(stored).__name__}")
            stored = []
        entries: List[LogEntry] = []
        for raw in stored:
            if not isinstance(raw, dict):
                logger.warning("Omitiendo entrada del registro que no es un objeto: %r", raw)
                continue
            try:
                entries.append(entry_from_dict(raw))
            except (TypeError, ValueError) as e:
                logger.warning(f"Omitiendo entrada inválida del registro: {e}")
        self._entries = entries

    def _save_log(self) -> None:
        self._gateway.save(self._key, [entry.to_dict() for entry in self._entries])

    def _save_inventory(self) -> None:
        self.inventory.save()
        if self.catalog_map is not None:
            self.catalog_map.save()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def register_event_handler(self, event_type: ChangeLogEventType, handler: ChangeLogEventHandler) -> None:
        """
        Register an event handler for a specific event type.
        """
        self._event_handlers[event_type].add(handler)

    def unregister_event_handler(self, event_type: ChangeLogEventType, handler: ChangeLogEventHandler) -> None:
        """
        Unregister an event handler.
        """
        self._event_handlers[event_type].discard(handler)

    def _notify_event_handlers(self, event: ChangeLogEvent) -> None:
        """
        Notify all registered handlers of an event.
        """
        for handler in self._event_handlers[event.event_type]:
            try:
                handler.handle_event(event)
            except Exception as e:
                logger.error(f"Error en el manejador de eventos: {e}")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _append(self, new_entries: List[LogEntry]) -> None:
        """Append entries and persist the whole log, even when nothing was added."""
        start = len(self._entries)
        self._entries.extend(new_entries)
        self._save_log()
        for offset, entry in enumerate(new_entries):
            self._notify_event_handlers(ChangeLogEvent(
                ChangeLogEventType.RECORDED, entry, start + offset
            ))

    def record_simple_change(
        self,
        item_name: str,
        field_name: str,
        old_value: Any,
        new_value: Any,
        idx: int,
    ) -> LogEntry:
        """Record a change without identity or scope tagging.

        The entry variant follows the field tag, so ``"Deleted"`` with a JSON
        snapshot is undoable the same way a structured delete is.
        """
        entry = entry_from_dict({
            "timestamp": self._clock(),
            "itemName": item_name,
            "field": field_name,
            "oldValue": old_value,
            "newValue": new_value,
            "idx": idx,
            "undone": False,
        })
        self._append([entry])
        return entry

    def record_field_diffs(
        self,
        old_item: Optional[Dict[str, Any]],
        new_item: Optional[Dict[str, Any]],
        idx: Optional[int] = None,
    ) -> List[LogEntry]:
        """Record an add (``old_item`` is None), a delete (``new_item`` is None) or an edit.

        Adds and deletes produce exactly one entry carrying a snapshot of the
        existing side. Edits produce one entry per tracked field whose value
        changed. ``idx`` defaults to the reference item's current position, so a
        delete must be recorded before the item leaves the collection or be
        given an explicit ``idx``; otherwise it is recorded as -1 and undo
        appends the restored item at the end.
        """
        if old_item is None and new_item is None:
            raise ValueError("Se requiere el artículo original o el actualizado.")
        reference = new_item if new_item is not None else old_item
        item_key = compute_identity(reference)
        timestamp = self._clock()
        position = self.inventory.position_of(reference) if idx is None else idx

        if old_item is None or new_item is None:
            entry_cls = ItemAdd if old_item is None else ItemDelete
            new_entries: List[LogEntry] = [entry_cls(
                timestamp=timestamp,
                item_name=reference.get("name") or "",
                idx=position,
                scope=SCOPE_INVENTORY,
                item_key=item_key,
                kind=TYPE_ITEM_ADD if old_item is None else TYPE_ITEM_DELETE,
                snapshot=deepcopy(dict(reference)),
            )]
        else:
            new_entries = [
                FieldEdit(
                    timestamp=timestamp,
                    item_name=new_item.get("name") or "",
                    idx=position,
                    scope=SCOPE_INVENTORY,
                    item_key=item_key,
                    kind=TYPE_ITEM_EDIT,
                    field_name=field_name,
                    old_value=old_item.get(field_name),
                    new_value=new_item.get(field_name),
                )
                for field_name in TRACKED_FIELDS
                if old_item.get(field_name) != new_item.get(field_name)
            ]
        self._append(new_entries)
        return new_entries

    def record_disposition(
        self,
        item: Dict[str, Any],
        old_disposition: Optional[Dict[str, Any]],
        new_disposition: Optional[Dict[str, Any]],
        idx: Optional[int] = None,
    ) -> DispositionChange:
        """Record an item being disposed of, or restored to active inventory."""
        entry = DispositionChange(
            timestamp=self._clock(),
            item_name=item.get("name") or "",
            idx=self.inventory.position_of(item) if idx is None else idx,
            scope=SCOPE_INVENTORY,
            item_key=compute_identity(item),
            action=FIELD_DISPOSED if new_disposition is not None else FIELD_DISPOSITION_UNDONE,
            old_disposition=deepcopy(old_disposition),
            new_disposition=deepcopy(new_disposition),
        )
        self._append([entry])
        return entry

    def record_price_history_delete(self, item: Dict[str, Any], record: Dict[str, Any]) -> PriceHistoryDelete:
        """Record the removal of one retail price record from an item's history."""
        if not item.get("uuid"):
            raise ValueError("El historial de precios requiere un artículo con uuid.")
        if "ts" not in record:
            raise ValueError("El registro de precio no tiene marca de tiempo ('ts').")
        entry = PriceHistoryDelete(
            timestamp=self._clock(),
            item_name=item.get("name") or "",
            idx=self.inventory.position_of(item),
            scope=SCOPE_INVENTORY,
            item_key=compute_identity(item),
            item_uuid=str(item["uuid"]),
            record=deepcopy(record),
        )
        self._append([entry])
        return entry

    def record_sync_checkpoint(self, sync_id: str, timestamp: Optional[int] = None) -> SyncMarker:
        """Append a sync marker recording a completed synchronization."""
        marker = SyncMarker(
            timestamp=self._clock() if timestamp is None else timestamp,
            sync_id=sync_id,
        )
        self._append([marker])
        return marker

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    def toggle_entry(self, log_index: int) -> bool:
        """Undo an applied entry or redo a reverted one.

        Returns False, changing nothing, when the index is out of range, the
        entry is not reversible (sync markers) or its record can no longer be
        found.
        """
        entry = self.get_entry(log_index)
        if entry is None:
            logger.debug(f"Índice de registro fuera de rango: {log_index}")
            return False
        handler = self._toggle_handlers.get(type(entry))
        if handler is None:
            logger.debug(f"La entrada {log_index} no es reversible: {type(entry).__name__}")
            return False
        if not handler(entry):
            logger.debug(f"Entrada {log_index} sin artículo asociado; se omite")
            return False
        self._save_log()
        self._notify_event_handlers(ChangeLogEvent(
            ChangeLogEventType.TOGGLED, entry, log_index
        ))
        return True

    def _resolve(self, entry: LogEntry, item_key: Optional[str] = None, **lookup: Any) -> Optional[int]:
        """Find the current position of the record ``entry`` refers to.

        Identity lookup is used whenever a key is known; ``idx`` is trusted
        only for entries recorded without one.
        """
        key = item_key or entry.item_key
        if key:
            return self.inventory.find(key, preferred=entry.idx, **lookup)
        if self.inventory.get(entry.idx) is not None:
            return entry.idx
        return None

    def _snapshot_key(self, entry: Any) -> Optional[str]:
        if entry.item_key:
            return entry.item_key
        return compute_identity(entry.snapshot) if entry.snapshot else None

    def _toggle_field_edit(self, entry: FieldEdit) -> bool:
        # item_key was computed with the field holding new_value.
        position = self._resolve(
            entry, field_name=entry.field_name, keyed_value=entry.new_value
        )
        if position is None:
            return False
        value = entry.new_value if entry.undone else entry.old_value
        item = self.inventory.get(position)
        replaced = item.get(entry.field_name)
        self.inventory.execute(ApplyFieldValue(position, entry.field_name, value))
        entry.undone = not entry.undone
        if self.catalog_map is not None:
            if entry.field_name == "serial" and replaced != value:
                self.catalog_map.drop(replaced)
            self.catalog_map.sync_item(item)
        self._save_inventory()
        return True

    def _insert_snapshot(self, entry: Any) -> None:
        restored = deepcopy(entry.snapshot)
        self.inventory.execute(InsertRecord(entry.idx, restored))
        if self.catalog_map is not None:
            self.catalog_map.sync_item(restored)

    def _remove_snapshot_record(self, entry: Any) -> bool:
        item_key = self._snapshot_key(entry)
        if item_key:
            position = self.inventory.find(item_key, preferred=entry.idx)
        elif self.inventory.get(entry.idx) == {}:
            # An unreadable snapshot only ever restored an empty record.
            position = entry.idx
        else:
            position = None
        if position is None:
            return False
        removed = self.inventory.execute(RemoveRecord(position))
        if removed and self.catalog_map is not None:
            self.catalog_map.drop(removed.get("serial"))
        return True

    def _toggle_item_delete(self, entry: ItemDelete) -> bool:
        if entry.undone:
            if not self._remove_snapshot_record(entry):
                return False
        else:
            self._insert_snapshot(entry)
        entry.undone = not entry.undone
        self._save_inventory()
        return True

    def _toggle_item_add(self, entry: ItemAdd) -> bool:
        if not entry.snapshot:
            # Nothing to put back after removing it.
            logger.debug(f"Entrada de alta sin instantánea legible: {entry.item_name!r}")
            return False
        if entry.undone:
            self._insert_snapshot(entry)
        elif not self._remove_snapshot_record(entry):
            return False
        entry.undone = not entry.undone
        self._save_inventory()
        return True

    def _toggle_disposition(self, entry: DispositionChange) -> bool:
        position = self._resolve(entry)
        if position is None:
            return False
        if entry.undone:
            target = entry.new_disposition
            if target is None and entry.action == FIELD_DISPOSED:
                return False
        else:
            target = entry.old_disposition
        self.inventory.execute(SetDisposition(position, deepcopy(target)))
        entry.undone = not entry.undone
        self._save_inventory()
        return True

    def _toggle_price_history_delete(self, entry: PriceHistoryDelete) -> bool:
        if self.price_history is None or not entry.item_uuid or "ts" not in entry.record:
            return False
        if entry.undone:
            self.price_history.remove_record(entry.item_uuid, entry.record["ts"])
        else:
            self.price_history.restore_record(entry.item_uuid, deepcopy(entry.record))
        entry.undone = not entry.undone
        self.price_history.save()
        return True

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    async def clear_log(self) -> bool:
        """Empty the log after the user confirms; declining changes nothing."""
        confirmed = False
        if self.prompt is not None:
            confirmed = await self.prompt.confirm(CLEAR_PROMPT_MESSAGE, CLEAR_PROMPT_TITLE)
        if not confirmed:
            logger.info("Limpieza del registro de cambios cancelada")
            return False
        self._entries = []
        self._save_log()
        logger.info("Registro de cambios vaciado")
        self._notify_event_handlers(ChangeLogEvent(ChangeLogEventType.CLEARED))
        return True

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def get_manifest(self, since: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return manifest records for entries stamped at or after ``since``."""
        return extract_manifest(self._entries, since)

    def get_pending_manifest(self) -> List[Dict[str, Any]]:
        """Return the manifest of everything logged since the last sync marker."""
        marker = last_sync_marker(self._entries)
        return self.get_manifest(marker.timestamp if marker else None)
