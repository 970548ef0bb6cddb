import pytest

from inventory_changelog.models import (
    TRACKED_FIELDS,
    DispositionChange,
    FieldEdit,
    ItemAdd,
    ItemDelete,
    PriceHistoryDelete,
    SyncMarker,
)
from inventory_changelog.services import ChangeLogEventType
from test_support import RecordingHandler, clone, make_item, require


def test_edit_of_one_field_records_one_entry(service, store) -> None:
    entries = service.record_field_diffs(
        {"price": 10, "name": "Eagle"}, {"price": 12, "name": "Eagle"}
    )

    require(len(entries) == 1, "Expected exactly one entry for one changed field")
    entry = entries[0]
    assert isinstance(entry, FieldEdit)
    assert entry.field_name == "price"
    assert entry.old_value == 10
    assert entry.new_value == 12
    assert entry.undone is False
    assert entry.kind == "item-edit"
    assert entry.scope == "inventory"
    assert entry.item_key == "Eagle|"
    assert store.load("changeLog") == [entry.to_dict()]


def test_edit_records_one_entry_per_changed_tracked_field(service) -> None:
    old = make_item(uuid="u-1")
    new = clone(old)
    new.update(price=35.0, qty=3, notes="Toned", purchaseLocation="Show")

    entries = service.record_field_diffs(old, new)

    assert [e.field_name for e in entries] == ["qty", "price", "purchaseLocation", "notes"]
    for entry in entries:
        assert entry.old_value == old[entry.field_name]
        assert entry.new_value == new[entry.field_name]
        assert entry.item_key == "u-1"
    assert len({e.timestamp for e in entries}) == 1


def test_every_tracked_field_is_diffed(service) -> None:
    old = {field_name: "a" for field_name in TRACKED_FIELDS}
    new = {field_name: "b" for field_name in TRACKED_FIELDS}

    entries = service.record_field_diffs(old, new)

    assert [e.field_name for e in entries] == list(TRACKED_FIELDS)


def test_untracked_fields_are_not_logged(service) -> None:
    old = make_item(uuid="u-1", serial="S1", grade="MS69")
    new = clone(old)
    new.update(serial="S2", grade="MS70", numistaId="N3")

    entries = service.record_field_diffs(old, new)

    assert entries == []
    assert len(service) == 0


def test_edit_without_changes_still_persists_log(service, store) -> None:
    item = make_item()

    service.record_field_diffs(item, clone(item))

    assert store.saved_keys() == ["changeLog"]


def test_edit_uses_current_position_of_live_item(service, inventory) -> None:
    inventory.items.extend([make_item(name="A"), make_item(name="B"), make_item(name="C")])
    inventory.rebuild_index()
    live = inventory.items[2]
    old = clone(live)
    live["price"] = 99

    entries = service.record_field_diffs(old, live)

    assert entries[0].idx == 2


def test_add_records_single_entry_with_snapshot(service, inventory) -> None:
    item = make_item(uuid="u-9")
    inventory.items.append(item)
    inventory.rebuild_index()

    entries = service.record_field_diffs(None, item)

    require(len(entries) == 1, "Add must produce exactly one entry")
    entry = entries[0]
    assert isinstance(entry, ItemAdd)
    assert entry.field_tag == "Added"
    assert entry.kind == "item-add"
    assert entry.snapshot == item
    assert entry.snapshot is not item
    assert entry.idx == 0
    assert entry.to_dict()["oldValue"] is None
    assert entry.to_dict()["newValue"] == item


def test_delete_records_single_entry_with_snapshot(service, inventory) -> None:
    inventory.items.extend([make_item(name="A"), make_item(name="X", serial="S-X")])
    inventory.rebuild_index()
    target = inventory.items[1]

    entries = service.record_field_diffs(target, None)

    require(len(entries) == 1, "Delete must produce exactly one entry")
    entry = entries[0]
    assert isinstance(entry, ItemDelete)
    assert entry.field_tag == "Deleted"
    assert entry.kind == "item-delete"
    assert entry.item_key == "S-X"
    assert entry.idx == 1
    assert entry.to_dict()["oldValue"] == target
    assert entry.to_dict()["newValue"] is None


def test_delete_of_item_not_in_collection_uses_explicit_or_missing_index(service) -> None:
    item = make_item(name="Gone")

    missing = service.record_field_diffs(item, None)[0]
    explicit = service.record_field_diffs(item, None, idx=4)[0]

    assert missing.idx == -1
    assert explicit.idx == 4


def test_record_requires_one_side(service) -> None:
    with pytest.raises(ValueError):
        service.record_field_diffs(None, None)


def test_simple_change_is_untagged(service, store) -> None:
    entry = service.record_simple_change("Eagle", "qty", 1, 2, 0)

    data = entry.to_dict()
    assert isinstance(entry, FieldEdit)
    assert "scope" not in data and "itemKey" not in data and "type" not in data
    assert data["undone"] is False
    assert store.load("changeLog") == [data]


def test_simple_change_with_sentinel_tag_builds_matching_variant(service) -> None:
    deleted = service.record_simple_change("Eagle", "Deleted", '{"name": "Eagle"}', "", 3)
    disposed = service.record_simple_change("Eagle", "Disposed", "", '{"type": "sold"}', 3)

    assert isinstance(deleted, ItemDelete)
    assert deleted.snapshot == {"name": "Eagle"}
    assert isinstance(disposed, DispositionChange)
    assert disposed.new_disposition == {"type": "sold"}


def test_timestamps_are_monotonic_in_append_order(service) -> None:
    service.record_simple_change("A", "qty", 1, 2, 0)
    service.record_sync_checkpoint("s-1")
    service.record_simple_change("B", "qty", 1, 2, 1)

    stamps = [entry.timestamp for entry in service.entries]
    assert stamps == sorted(stamps)


def test_sync_checkpoint_appends_marker(service, store) -> None:
    marker = service.record_sync_checkpoint("sync-1", 150)

    assert isinstance(marker, SyncMarker)
    assert store.load("changeLog") == [
        {"type": "sync-marker", "syncId": "sync-1", "timestamp": 150}
    ]


def test_record_disposition(service, inventory) -> None:
    item = make_item(uuid="u-1")
    inventory.items.append(item)
    inventory.rebuild_index()

    disposed = service.record_disposition(item, None, {"type": "sold", "amount": 45})
    restored = service.record_disposition(item, {"type": "sold", "amount": 45}, None)

    assert disposed.field_tag == "Disposed"
    assert restored.field_tag == "Disposition Undone"
    assert disposed.item_key == "u-1"
    assert disposed.idx == 0


def test_record_price_history_delete_requires_uuid(service) -> None:
    with pytest.raises(ValueError):
        service.record_price_history_delete(make_item(), {"ts": 1, "retail": 30})

    entry = service.record_price_history_delete(make_item(uuid="u-1"), {"ts": 1, "retail": 30})
    assert isinstance(entry, PriceHistoryDelete)
    assert entry.item_uuid == "u-1"


def test_recording_notifies_handlers(service) -> None:
    handler = RecordingHandler()
    service.register_event_handler(ChangeLogEventType.RECORDED, handler)

    service.record_field_diffs({"price": 1, "qty": 1}, {"price": 2, "qty": 2})

    assert [event.log_index for event in handler.events] == [0, 1]


def test_failing_handler_does_not_break_recording(service) -> None:
    class Broken:
        def handle_event(self, event):
            raise RuntimeError("render failed")

    service.register_event_handler(ChangeLogEventType.RECORDED, Broken())

    service.record_simple_change("A", "qty", 1, 2, 0)

    assert len(service) == 1


def test_loading_and_saving_preserves_legacy_records(service, store) -> None:
    legacy = [
        {"timestamp": 1, "itemName": "Eagle", "field": "Added", "oldValue": "",
         "newValue": "Silver · Coin · Eagle · 1 oz · $30.00", "idx": 1, "undone": False},
        {"timestamp": 2, "itemName": "Maple", "field": "Deleted",
         "oldValue": '{"name": "Maple"}', "newValue": "", "idx": 0, "undone": True},
        {"timestamp": 3, "itemName": "Maple", "field": "Disposed", "oldValue": "",
         "newValue": '{"type": "sold"}', "idx": 0, "undone": False},
        {"timestamp": 4, "itemName": "Maple", "field": "priceHistoryDelete",
         "oldValue": '{"uuid": "u-1", "entry": {"ts": 5}}', "newValue": None,
         "idx": -1, "undone": False},
    ]
    store.save("changeLog", legacy)

    service.load()
    service.record_sync_checkpoint("sync-1", 10)

    assert store.load("changeLog")[:4] == legacy
    assert service.get_manifest()[0]["newValue"] == legacy[0]["newValue"]
