"""Tests for on-device storage: key-value file, toggle ledger, visits and snapshots."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from basket.constants import PENDING_TOGGLES_KEY
from basket.core.models import ChatMessage, Group, ShoppingItem, ShoppingList, UserProfile
from basket.storage import (
    FileKeyValueStore,
    PendingToggleLedger,
    Scope,
    Snapshot,
    SnapshotStore,
    VisitTracker,
)
from basket.storage.visits import visit_key


@pytest.fixture
def kv(tmp_path: Path) -> FileKeyValueStore:
    return FileKeyValueStore(tmp_path / "storage.json")


def test_kv_round_trip_and_remove(kv: FileKeyValueStore) -> None:
    assert kv.get("a") is None
    kv.set("a", "1")
    kv.set("b", "2")
    assert kv.get("a") == "1"
    kv.remove("a")
    assert kv.get("a") is None
    assert kv.keys() == ["b"]


def test_kv_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("{not json", encoding="utf-8")
    kv = FileKeyValueStore(path)
    assert kv.get("a") is None
    kv.set("a", "1")
    assert json.loads(path.read_text(encoding="utf-8")) == {"a": "1"}


def test_kv_treats_undecodable_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_bytes(b"\xff\xfe garbage")
    kv = FileKeyValueStore(path)
    ledger = PendingToggleLedger(kv)

    assert kv.get("a") is None
    assert ledger.get_all() == {}
    assert VisitTracker(kv).last_visit(Scope.LIST, "l1") == 0
    ledger.set_pending("i1", True)
    assert ledger.get_all() == {"i1": True}


def test_ledger_supersession(kv: FileKeyValueStore) -> None:
    ledger = PendingToggleLedger(kv)
    ledger.set_pending("i1", True)
    ledger.set_pending("i1", False)
    assert ledger.get_all() == {"i1": False}
    assert json.loads(kv.get(PENDING_TOGGLES_KEY)) == {"i1": False}


def test_ledger_removes_key_when_empty(kv: FileKeyValueStore) -> None:
    ledger = PendingToggleLedger(kv)
    ledger.set_pending("i1", True)
    ledger.set_pending("i2", False)
    assert ledger.clear("i1")
    assert kv.get(PENDING_TOGGLES_KEY) is not None
    assert ledger.clear("i2")
    assert kv.get(PENDING_TOGGLES_KEY) is None
    assert PENDING_TOGGLES_KEY not in kv.keys()


def test_ledger_drops_non_boolean_values(kv: FileKeyValueStore) -> None:
    kv.set(PENDING_TOGGLES_KEY, json.dumps({"i1": "false", "i2": 1, "i3": False}))
    assert PendingToggleLedger(kv).get_all() == {"i3": False}


def test_ledger_clear_many(kv: FileKeyValueStore) -> None:
    ledger = PendingToggleLedger(kv)
    for item_id in ("i1", "i2", "i3"):
        ledger.set_pending(item_id, True)
    ledger.clear_many(item_id for item_id in ("i1", "i3"))
    assert ledger.get_all() == {"i2": True}


def test_ledger_survives_restart(tmp_path: Path) -> None:
    PendingToggleLedger(FileKeyValueStore(tmp_path / "s.json")).set_pending("i1", True)
    reopened = PendingToggleLedger(FileKeyValueStore(tmp_path / "s.json"))
    assert reopened.get_all() == {"i1": True}


def test_ledger_overlay(kv: FileKeyValueStore) -> None:
    ledger = PendingToggleLedger(kv)
    items = [
        ShoppingItem(id="i1", list_id="l1", text="Milk", added_by="a"),
        ShoppingItem(id="i2", list_id="l1", text="Eggs", added_by="a"),
    ]
    ledger.set_pending("i1", True)
    overlaid = ledger.overlay(items)
    assert [i.is_done for i in overlaid] == [True, False]
    assert overlaid[1] is items[1]


def test_ledger_ignores_unreadable_blob(kv: FileKeyValueStore) -> None:
    kv.set(PENDING_TOGGLES_KEY, "[broken")
    assert PendingToggleLedger(kv).get_all() == {}


def test_visits_are_monotonic(kv: FileKeyValueStore) -> None:
    now = [100]
    visits = VisitTracker(kv, clock=lambda: now[0])
    assert visits.last_visit(Scope.LIST, "l1") == 0
    assert visits.mark_visited(Scope.LIST, "l1") == 100
    now[0] = 50
    assert visits.mark_visited(Scope.LIST, "l1") == 100
    assert kv.get(visit_key(Scope.LIST, "l1")) == "100"


def test_visit_keys_are_scoped() -> None:
    assert visit_key(Scope.CHAT, "g1") == "chat_last_visit_g1"
    assert visit_key(Scope.LIST, "l1") == "list_last_visit_l1"
    assert visit_key(Scope.GROUP, "g1") == "group_last_visit_g1"


def _snapshot() -> Snapshot:
    return Snapshot(
        user_id="alice",
        timestamp=1000,
        user_profile=UserProfile(uid="alice", email="a@x.io", display_name="alice"),
        groups=(
            Group(id="g1", name="Home", owner_id="alice"),
            Group(id="g2", name="Work", owner_id="bob"),
        ),
        lists=(
            ShoppingList(id="l1", group_id="g1", name="Food", created_by="alice"),
            ShoppingList(id="l2", group_id="g2", name="Office", created_by="bob"),
        ),
        items=(
            ShoppingItem(id="i1", list_id="l1", text="Milk", added_by="alice"),
            ShoppingItem(id="i2", list_id="l2", text="Paper", added_by="bob"),
        ),
        chat_messages={
            "g1": (ChatMessage(id="m1", group_id="g1", text="hi", user_id="alice"),),
            "g2": (ChatMessage(id="m2", group_id="g2", text="yo", user_id="bob"),),
        },
    )


def test_snapshot_store_round_trip(tmp_path: Path) -> None:
    snapshots = SnapshotStore(tmp_path / "backups")
    assert snapshots.read() is None
    snapshots.write(_snapshot())
    restored = snapshots.read()
    assert restored == _snapshot()
    assert restored.version == "1.1"


def test_snapshot_file_layout(tmp_path: Path) -> None:
    snapshots = SnapshotStore(tmp_path / "backups")
    path = snapshots.write(_snapshot())
    assert path.name == "shopping_list_backup.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert set(data) == {
        "version",
        "timestamp",
        "userId",
        "userProfile",
        "groups",
        "lists",
        "items",
        "chatMessages",
    }


def test_corrupt_snapshot_reads_as_none(tmp_path: Path) -> None:
    snapshots = SnapshotStore(tmp_path)
    snapshots.path.write_text('{"version": "1.1"', encoding="utf-8")
    assert snapshots.read() is None
    snapshots.path.write_text('{"version": "1.1"}', encoding="utf-8")
    assert snapshots.read() is None
    snapshots.path.write_bytes(b'{"userId": "\xff\xfe"}')
    assert snapshots.read() is None


def test_snapshot_write_leaves_no_partial_file(tmp_path: Path, monkeypatch) -> None:
    snapshots = SnapshotStore(tmp_path)
    snapshots.write(_snapshot())

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("basket.storage.files.os.replace", broken_replace)
    with pytest.raises(OSError):
        snapshots.write(Snapshot(user_id="alice", timestamp=2000))
    assert snapshots.read() == _snapshot()
    assert [p.name for p in tmp_path.iterdir()] == [snapshots.path.name]


def test_snapshot_visible_to_filters_groups() -> None:
    visible = _snapshot().visible_to("alice")
    assert [g.id for g in visible.groups] == ["g1"]
    assert [lst.id for lst in visible.lists] == ["l1"]
    assert [i.id for i in visible.items] == ["i1"]
    assert set(visible.chat_messages) == {"g1"}


def test_snapshot_info_and_delete(tmp_path: Path) -> None:
    snapshots = SnapshotStore(tmp_path / "backups")
    assert snapshots.info() == {"exists": False}
    snapshots.write(_snapshot())
    info = snapshots.info()
    assert info["exists"] and info["size"] > 0
    snapshots.delete()
    assert not snapshots.path.exists()
    snapshots.delete()
