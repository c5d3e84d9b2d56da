from __future__ import annotations

import pytest

from stardust_dsp.application.ports import ArrayUnion, Filter, Increment
from stardust_dsp.errors import DocumentNotFoundError, StardustError
from stardust_dsp.infrastructure.document_stores import InMemoryDocumentStore, JsonFileDocumentStore


def test_get_returns_copies() -> None:
    store = InMemoryDocumentStore()
    store.set("releases", "R1", {"metadata": {"title": "Orbit"}})

    fetched = store.get("releases", "R1")
    fetched["metadata"]["title"] = "changed"

    assert store.get("releases", "R1")["metadata"]["title"] == "Orbit"
    assert store.get("releases", "missing") is None


def test_merge_is_deep_and_applies_transforms() -> None:
    store = InMemoryDocumentStore()
    store.set("artists", "luna", {"stats": {"releaseCount": 1, "trackCount": 2}, "releases": ["R1"]})

    store.set(
        "artists",
        "luna",
        {"stats": {"releaseCount": Increment(1)}, "releases": ArrayUnion(("R1", "R2"))},
        merge=True,
    )

    assert store.get("artists", "luna") == {"stats": {"releaseCount": 2, "trackCount": 2}, "releases": ["R1", "R2"]}


def test_update_dotted_paths_and_missing_documents() -> None:
    store = InMemoryDocumentStore()
    store.set("deliveries", "d1", {"processing": {"status": "pending"}})

    store.update("deliveries", "d1", {"processing.status": "parsing", "processing.attempts.parse": Increment(1)})

    assert store.get("deliveries", "d1")["processing"] == {"status": "parsing", "attempts": {"parse": 1}}
    with pytest.raises(DocumentNotFoundError):
        store.update("deliveries", "missing", {"processing.status": "parsing"})


def test_query_filters_order_and_limit() -> None:
    store = InMemoryDocumentStore()
    store.set("analytics_daily", "a", {"date": "2026-03-01", "plays": 5})
    store.set("analytics_daily", "b", {"date": "2026-03-15", "plays": 9})
    store.set("analytics_daily", "c", {"date": "2026-04-01", "plays": 1})
    store.set("analytics_daily", "d", {"plays": 3})

    march = store.query(
        "analytics_daily",
        [Filter("date", ">=", "2026-03-01"), Filter("date", "<=", "2026-03-31")],
        order_by="plays",
        descending=True,
    )
    assert [item.key for item in march] == ["b", "a"]

    ordered = store.query("analytics_daily", order_by="date")
    assert [item.key for item in ordered] == ["a", "b", "c", "d"]
    assert [item.key for item in store.query("analytics_daily", [Filter("plays", "in", (1, 3))], limit=1)] == ["c"]
    assert [item.key for item in store.query("analytics_daily", [Filter("date", "==", None)])] == ["d"]


def test_unknown_filter_operator_rejected() -> None:
    with pytest.raises(ValueError):
        Filter("plays", "~=", 1)


def test_batch_applies_on_commit_and_enforces_limit() -> None:
    store = InMemoryDocumentStore()
    store.set("plays", "old", {"completed": False})
    batch = store.batch()
    batch.set("plays", "p1", {"completed": True})
    batch.delete("plays", "old")

    assert store.get("plays", "p1") is None
    assert batch.commit() == 2
    assert store.get("plays", "p1") == {"completed": True}
    assert store.get("plays", "old") is None

    small = type(batch)(store, limit=1)
    small.set("plays", "p2", {})
    with pytest.raises(StardustError):
        small.set("plays", "p3", {})


def test_failed_batch_commit_leaves_store_untouched() -> None:
    store = InMemoryDocumentStore()
    store.set("tracks", "T1", {"stats": {"playCount": 1}})
    batch = store.batch()
    batch.update("tracks", "T1", {"stats.playCount": Increment(1)})
    batch.set("tracks", "T2", {"stats": {"playCount": 1}})
    batch.update("tracks", "missing", {"stats.playCount": Increment(1)})

    with pytest.raises(DocumentNotFoundError):
        batch.commit()

    assert store.get("tracks", "T1") == {"stats": {"playCount": 1}}
    assert store.get("tracks", "T2") is None
    assert batch.commit() == 0


def test_json_store_persists_between_instances(tmp_path) -> None:
    path = tmp_path / "state" / "documents.json"
    first = JsonFileDocumentStore(path)
    first.set("deliveries", "d1", {"processing": {"status": "completed"}})

    second = JsonFileDocumentStore(path)

    assert second.get("deliveries", "d1") == {"processing": {"status": "completed"}}
    assert second.collections() == ["deliveries"]
