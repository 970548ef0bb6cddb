"""Stable identity keys for inventory items."""

from __future__ import annotations

from typing import Any, Mapping, Optional

# Fields the identity key can depend on. Edits to any other field never
# change an item's key.
IDENTITY_FIELDS = ("uuid", "serial", "numistaId", "name", "date")


def _text(value: Any) -> str:
    """Render a possibly-missing value the way the key format expects."""
    return str(value) if value else ""


def compute_identity(item: Optional[Mapping[str, Any]]) -> str:
    """Return the stable identity key for an inventory item.

    Priority: ``uuid`` -> ``serial`` -> ``numistaId|name|date`` (only when a
    catalog id is present) -> ``name|date``. Positional index is never part
    of the key, so the key survives reordering of the collection.
    """
    if item is None:
        return ""
    if item.get("uuid"):
        return str(item["uuid"])
    if item.get("serial"):
        return str(item["serial"])
    name = _text(item.get("name"))
    date = _text(item.get("date"))
    if item.get("numistaId"):
        return f"{item['numistaId']}|{name}|{date}"
    return f"{name}|{date}"
