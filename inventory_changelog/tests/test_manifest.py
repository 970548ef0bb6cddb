from inventory_changelog.manifest import MANIFEST_KEYS, extract_manifest, last_sync_marker
from inventory_changelog.models import FieldEdit, SyncMarker, entry_from_dict
from test_support import make_item


def _entry(timestamp, field_name="price", **extra):
    return FieldEdit(
        timestamp=timestamp,
        item_name="Eagle",
        idx=2,
        scope="inventory",
        item_key="u-1",
        kind="item-edit",
        field_name=field_name,
        old_value=10,
        new_value=12,
        **extra,
    )


def test_markers_excluded_and_bound_is_inclusive() -> None:
    log = [_entry(100), SyncMarker(timestamp=150, sync_id="s-1"), _entry(200)]

    everything = extract_manifest(log)
    bounded = extract_manifest(log, 150)

    assert [record["timestamp"] for record in everything] == [100, 200]
    assert [record["timestamp"] for record in bounded] == [200]
    assert [record["timestamp"] for record in extract_manifest(log, 200)] == [200]
    assert extract_manifest(log, 201) == []


def test_projection_drops_local_fields() -> None:
    (record,) = extract_manifest([_entry(100, undone=True)])

    assert tuple(record) == MANIFEST_KEYS
    assert record == {
        "timestamp": 100,
        "scope": "inventory",
        "itemKey": "u-1",
        "type": "item-edit",
        "field": "price",
        "itemName": "Eagle",
        "oldValue": 10,
        "newValue": 12,
    }


def test_legacy_entries_project_missing_values_as_none() -> None:
    legacy = entry_from_dict({
        "timestamp": 1, "itemName": "Eagle", "field": "qty",
        "oldValue": 1, "newValue": 2, "idx": 0, "undone": False,
    })

    (record,) = extract_manifest([legacy])

    assert record["scope"] is None
    assert record["itemKey"] is None
    assert record["type"] is None


def test_manifest_preserves_log_order() -> None:
    log = [_entry(t, field_name=f"f{t}") for t in (10, 20, 20, 30)]

    assert [r["field"] for r in extract_manifest(log, 20)] == ["f20", "f20", "f30"]


def test_last_sync_marker() -> None:
    first = SyncMarker(timestamp=100, sync_id="a")
    second = SyncMarker(timestamp=300, sync_id="b")

    assert last_sync_marker([_entry(50)]) is None
    assert last_sync_marker([first, _entry(200), second, _entry(400)]) is second


def test_service_manifest_matches_scenario(service) -> None:
    clock_values = iter([100, 200])
    service._clock = lambda: next(clock_values)
    service.record_field_diffs({"price": 10, "name": "Eagle"}, {"price": 12, "name": "Eagle"})
    service.record_sync_checkpoint("sync-1", 150)
    service.record_field_diffs({"price": 12, "name": "Eagle"}, {"price": 15, "name": "Eagle"})

    assert [r["timestamp"] for r in service.get_manifest(None)] == [100, 200]
    assert [r["timestamp"] for r in service.get_manifest(150)] == [200]
    assert len(service) == 3


def test_pending_manifest_uses_last_marker(service) -> None:
    service.record_simple_change("A", "qty", 1, 2, 0)
    marker = service.record_sync_checkpoint("sync-1")
    after = service.record_field_diffs(None, make_item(uuid="u-2"))

    pending = service.get_pending_manifest()

    assert marker.timestamp < after[0].timestamp
    assert [r["type"] for r in pending] == ["item-add"]


def test_pending_manifest_without_marker_returns_everything(service) -> None:
    service.record_simple_change("A", "qty", 1, 2, 0)
    service.record_simple_change("B", "qty", 1, 2, 1)

    assert len(service.get_pending_manifest()) == 2


def test_manifest_does_not_expose_mutable_entry_state(service) -> None:
    item = make_item(uuid="u-1")
    service.record_field_diffs(None, item)

    record = service.get_manifest()[0]
    record["newValue"]["name"] = "changed"

    assert service.entries[0].snapshot["name"] == "American Eagle"
