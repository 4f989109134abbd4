import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from errors import NotFoundError, NotImplementedFeature, ValidationError
from main import create_app
from orders import OrderService, OrderStore
from users import UserStore, build_password_context

SETTINGS = Settings(secret_key="test-jwt-secret-strong-value-123456", bcrypt_rounds=4)

ITEMS = [{"name": "rice 5kg", "quantity": 2, "price": 7.5}, {"name": "oil 1l", "quantity": 1, "price": 3.2}]


def _app():
    db = mongomock.MongoClient()["logistics_test"]
    return create_app(SETTINGS, db=db)


def _service():
    db = mongomock.MongoClient()["logistics_test"]
    users = UserStore(db, build_password_context(4))
    return OrderService(OrderStore(db), users), users


def _login(client: TestClient, email: str, role: str = "customer") -> dict:
    reg = client.post("/auth/register", json={"emailId": email, "password": "pw12345", "role": role})
    assert reg.status_code == 200, reg.text
    login = client.post("/auth/login", json={"emailId": email, "password": "pw12345"})
    return {"Authorization": f"Bearer {login.json()['token']}"}


def test_create_order_for_self():
    app = _app()
    with TestClient(app) as client:
        headers = _login(client, "c@b.com")
        resp = client.post("/order/create", json={"items": ITEMS, "dropAddressNo": 12}, headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "Order placed"

        order = app.state.db["order"].find_one({"orderId": body["orderId"]})
        customer = app.state.db["user"].find_one({"emailId": "c@b.com"})
        assert order["customerId"] == customer["_id"]
        assert order["status"] == "queued"
        assert order["dropAddressNo"] == 12
        assert order["agentId"] is None
        assert order["storeId"] is None
        assert [i["name"] for i in order["items"]] == ["rice 5kg", "oil 1l"]
        assert order["createdAt"] is not None


def test_unknown_customer_is_not_found():
    with TestClient(_app()) as client:
        headers = _login(client, "shop@b.com", role="store")
        resp = client.post(
            "/order/create",
            json={"emailId": "unknown@x.com", "items": ITEMS, "dropAddressNo": 1},
            headers=headers,
        )
        assert resp.status_code == 404
        assert resp.json() == {"message": "Customer not found"}


def test_store_can_order_on_behalf_of_customer():
    app = _app()
    with TestClient(app) as client:
        _login(client, "c@b.com")
        store_headers = _login(client, "shop@b.com", role="store")
        resp = client.post(
            "/order/create",
            json={"emailId": "c@b.com", "items": ITEMS, "dropAddressNo": 3, "storeAddressNo": 8},
            headers=store_headers,
        )
        assert resp.status_code == 200
        order = app.state.db["order"].find_one({"orderId": resp.json()["orderId"]})
        customer = app.state.db["user"].find_one({"emailId": "c@b.com"})
        assert order["customerId"] == customer["_id"]
        assert order["storeAddressNo"] == 8


def test_customer_cannot_order_for_someone_else():
    app = _app()
    with TestClient(app) as client:
        _login(client, "victim@b.com")
        attacker = _login(client, "attacker@b.com")
        resp = client.post(
            "/order/create",
            json={"emailId": "victim@b.com", "items": ITEMS, "dropAddressNo": 1},
            headers=attacker,
        )
        assert resp.status_code == 403
        assert app.state.db["order"].count_documents({}) == 0


def test_create_order_validation():
    with TestClient(_app()) as client:
        headers = _login(client, "c@b.com")
        empty = client.post("/order/create", json={"items": [], "dropAddressNo": 1}, headers=headers)
        assert empty.status_code == 400

        bad_qty = client.post(
            "/order/create",
            json={"items": [{"name": "rice", "quantity": 0, "price": 1}], "dropAddressNo": 1},
            headers=headers,
        )
        assert bad_qty.status_code == 400
        assert bad_qty.json()["errors"][0]["field"] == "items.0.quantity"

        no_address = client.post("/order/create", json={"items": ITEMS}, headers=headers)
        assert no_address.status_code == 400


def test_create_order_requires_token():
    with TestClient(_app()) as client:
        resp = client.post("/order/create", json={"items": ITEMS, "dropAddressNo": 1})
        assert resp.status_code == 401


def test_list_orders_returns_own_orders():
    with TestClient(_app()) as client:
        alice = _login(client, "alice@b.com")
        bob = _login(client, "bob@b.com")
        client.post("/order/create", json={"items": ITEMS, "dropAddressNo": 1}, headers=alice)
        client.post("/order/create", json={"items": ITEMS, "dropAddressNo": 2}, headers=bob)

        resp = client.get("/order/list", headers=alice)
        assert resp.status_code == 200
        orders = resp.json()
        assert len(orders) == 1
        assert orders[0]["dropAddressNo"] == 1


def test_update_order_route():
    with TestClient(_app()) as client:
        customer = _login(client, "c@b.com")
        agent = _login(client, "agent@b.com", role="agent")
        order_id = client.post("/order/create", json={"items": ITEMS, "dropAddressNo": 1}, headers=customer).json()["orderId"]

        forbidden = client.put("/order/update", json={"orderId": order_id, "updates": {}}, headers=customer)
        assert forbidden.status_code == 403
        assert forbidden.json() == {"message": "Insufficient permissions"}

        missing = client.put("/order/update", json={"orderId": "nope", "updates": {}}, headers=agent)
        assert missing.status_code == 404
        assert missing.json() == {"message": "Order not found"}

        pending = client.put("/order/update", json={"orderId": order_id, "updates": {"status": "processing"}}, headers=agent)
        assert pending.status_code == 501


def test_service_create_order_unknown_customer():
    service, _ = _service()
    with pytest.raises(NotFoundError) as exc:
        service.create_order("unknown@x.com", ITEMS, 1)
    assert exc.value.message == "Customer not found"


def test_service_validates_before_lookup():
    service, users = _service()
    users.create("c@b.com", "pw12345", "customer")
    with pytest.raises(ValidationError) as exc:
        service.create_order("c@b.com", [{"name": "rice", "quantity": 1}], 1)
    assert exc.value.field == "items.0.price"
    assert service.orders.collection.count_documents({}) == 0


def test_service_update_order():
    service, users = _service()
    users.create("c@b.com", "pw12345", "customer")
    order = service.create_order("C@B.com", ITEMS, 4)
    assert service.orders.find_by_order_id(order["orderId"])["_id"] == order["_id"]

    with pytest.raises(NotFoundError):
        service.update_order("missing", {})
    with pytest.raises(NotImplementedFeature):
        service.update_order(order["orderId"], {"status": "fulfilled"})
