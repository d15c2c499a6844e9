from datetime import datetime, timezone

import pytest

from cartmerge.config import Settings
from cartmerge.core.merge import merge_carts
from cartmerge.core.models import Cart, CartEvent, CartItem
from cartmerge.services.exceptions import RepoError
from cartmerge.services.repo.json_repo import JSONCartStore, JSONEventRepo


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=str(tmp_path), orders_dir=str(tmp_path / "orders"),
                    events_file=str(tmp_path / "events.jsonl"))


def _merged_carts():
    when = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    carts = [
        Cart(id="a", name="Uniforms", created_by="alice",
             items=[CartItem(product_id="p1", product_name="Shirt", price=5, quantity=2, added_by="alice")]),
        Cart(id="b", name="Spare", created_by="bob",
             items=[CartItem(product_id="p2", product_name="Cap", price=3, quantity=1, added_by="bob")]),
    ]
    return merge_carts(carts, "b", "a", "dave", now=when)


def test_missing_order_is_empty(settings):
    assert JSONCartStore(settings).fetch_carts("o-404") == []


def test_round_trip_preserves_every_field(settings):
    store = JSONCartStore(settings)
    carts = _merged_carts()
    store.persist_carts("o1", carts)
    loaded = store.fetch_carts("o1")
    assert loaded == carts
    moved = loaded[0].items[1]
    assert (moved.added_by, moved.edited_by) == ("bob", "dave")
    assert moved.edited_at == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
    assert loaded[0].needs_reprint is True


def test_persist_replaces_whole_collection(settings):
    store = JSONCartStore(settings)
    store.persist_carts("o1", _merged_carts())
    store.persist_carts("o1", [Cart(id="z", name="Only")])
    assert [c.id for c in store.fetch_carts("o1")] == ["z"]


def test_order_ids_cannot_escape_store(settings):
    with pytest.raises(RepoError):
        JSONCartStore(settings).fetch_carts("../secrets")


def test_corrupt_file_raises_repo_error(settings, tmp_path):
    store = JSONCartStore(settings)
    (tmp_path / "orders").mkdir()
    (tmp_path / "orders" / "o1.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(RepoError):
        store.fetch_carts("o1")


def test_events_are_appended_as_jsonl(settings):
    repo = JSONEventRepo(settings)
    repo.append(CartEvent(type="merge", order_id="o1", actor="dave", payload={"source_id": "b"}))
    repo.append(CartEvent(type="rename", order_id="o1", actor="erin"))
    events = repo.read_all()
    assert [e.type for e in events] == ["merge", "rename"]
    assert events[0].payload == {"source_id": "b"}
