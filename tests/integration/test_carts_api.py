import pytest
from fastapi.testclient import TestClient

from cartmerge.main import create_app


@pytest.fixture
def client(tmp_path, monkeypatch):
    # isolate data dir for this test run
    d = tmp_path / "data"
    d.mkdir()
    monkeypatch.setenv("DATA_DIR", str(d))
    monkeypatch.setenv("ORDERS_DIR", str(d / "orders"))
    monkeypatch.setenv("EVENTS_FILE", str(d / "cart_events.jsonl"))
    with TestClient(create_app()) as c:
        yield c


BASE = "/api/v1/orders/inv-1/carts"
ALICE = {"X-User-Name": "alice"}


def _create(client, name, **extra):
    resp = client.post(BASE, json={"name": name, **extra}, headers=ALICE)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _add(client, cart_id, pid, price, qty):
    resp = client.post(f"{BASE}/{cart_id}/items", headers=ALICE,
                       json={"product_id": pid, "product_name": pid, "price": price, "quantity": qty})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_create_add_and_list(client):
    cart_id = _create(client, "Uniforms")["cart_id"]
    _add(client, cart_id, "p1", 5, 2)

    body = client.get(BASE).json()
    [cart] = body["carts"]
    assert cart["name"] == "Uniforms"
    assert cart["total"] == 10
    assert cart["items"][0]["added_by"] == "alice"


def test_whitespace_name_is_rejected(client):
    resp = client.post(BASE, json={"name": "   "}, headers=ALICE)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cart name cannot be empty"
    assert client.get(BASE).json()["carts"] == []


def test_duplicate_name_gets_numbered(client):
    _create(client, "Cart A")
    _create(client, "Cart A (2)")
    body = _create(client, "cart a", on_conflict="no")
    assert body["order"]["carts"][-1]["name"] == "cart a (3)"


def test_rename_into_existing_name_merges(client):
    uniforms = _create(client, "Uniforms")["cart_id"]
    _add(client, uniforms, "p1", 5, 2)
    spare = _create(client, "Spare")["cart_id"]
    _add(client, spare, "p2", 3, 1)

    resp = client.patch(f"{BASE}/{spare}", json={"name": "uniforms ", "on_conflict": "yes"}, headers=ALICE)
    assert resp.status_code == 200, resp.text
    [cart] = client.get(BASE).json()["carts"]
    assert (cart["id"], cart["name"], cart["total"]) == (uniforms, "Uniforms", 13)
    assert cart["needs_reprint"] is True


def test_merge_requires_confirmation(client):
    a = _create(client, "A")["cart_id"]
    b = _create(client, "B")["cart_id"]
    resp = client.post(f"{BASE}/merge", json={"source_id": a, "target_id": b}, headers=ALICE)
    assert resp.status_code == 409
    assert len(client.get(BASE).json()["carts"]) == 2

    resp = client.post(f"{BASE}/merge", headers=ALICE,
                       json={"source_id": a, "target_id": b, "trigger": "drag_drop", "confirmed": True})
    assert resp.status_code == 200
    assert [c["id"] for c in client.get(BASE).json()["carts"]] == [b]


def test_merge_unknown_cart_is_404(client):
    a = _create(client, "A")["cart_id"]
    resp = client.post(f"{BASE}/merge", json={"source_id": "ghost", "target_id": a, "confirmed": True})
    assert resp.status_code == 404


def test_self_merge_is_400(client):
    a = _create(client, "A")["cart_id"]
    resp = client.post(f"{BASE}/merge", json={"source_id": a, "target_id": a, "confirmed": True})
    assert resp.status_code == 400


def test_suggestions_and_auto_merge(client):
    a = _create(client, "Linen")["cart_id"]
    b = _create(client, "Shirts")["cart_id"]
    for i in range(9):
        _add(client, a, f"p{i}", 1, 1)
        _add(client, b, f"p{i}", 1, 1)
    _add(client, b, "p9", 1, 1)

    [suggestion] = client.get(f"{BASE}/suggestions").json()
    assert suggestion["confidence"] == 90
    assert suggestion["reason"] == "High product overlap"
    assert client.get(f"{BASE}/suggestions", params={"dismissed": f"{a}-{b}"}).json() == []

    resp = client.post(f"{BASE}/auto-merge")
    assert resp.status_code == 200, resp.text
    [cart] = client.get(BASE).json()["carts"]
    assert cart["id"] == b and len(cart["items"]) == 19


def test_delete_needs_confirm_flag(client):
    a = _create(client, "A")["cart_id"]
    assert client.delete(f"{BASE}/{a}").status_code == 409
    assert client.delete(f"{BASE}/{a}", params={"confirm": True}).status_code == 200
    assert client.get(BASE).json()["carts"] == []


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
