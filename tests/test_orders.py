import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

from pasal.errors import CancellationError, NotFoundError, ValidationError


def stock_of(store, product):
    return store.products.find_one({"_id": product["_id"]})["stock"]


def test_place_order_defaults_to_cash_in_hand(client, store, make_product, order_payload):
    product = make_product(stock=10)

    response = client.post("/orders", json=order_payload([(product, 2)]))

    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["payment_method"] == "Cash in hand"
    assert order["status"] == "pending"
    assert order["delivery_status"] == "in progress"
    assert order["email"] == "sita@example.com"
    assert order["products"][0]["product_id"] == str(product["_id"])
    assert order["products"][0]["description"] == "Loose leaf"
    assert order["purchase_date"]


def test_empty_payment_method_falls_back_to_default(services, make_product, order_payload):
    product = make_product()
    order = services.orders.place_order(order_payload([(product, 1)], paymentMethod=""))
    assert order["payment_method"] == "Cash in hand"


@pytest.mark.parametrize("method", ["esewa", "khalti", "Cash in hand"])
def test_allowed_payment_methods(services, make_product, order_payload, method):
    product = make_product()
    order = services.orders.place_order(order_payload([(product, 1)], paymentMethod=method))
    assert order["payment_method"] == method


def test_invalid_payment_method_is_rejected(client, store, make_product, order_payload):
    product = make_product(stock=10)

    response = client.post(
        "/orders", json=order_payload([(product, 2)], paymentMethod="bitcoin")
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid payment method"
    assert store.orders.count_documents({}) == 0
    assert stock_of(store, product) == 10


def test_place_order_requires_products(client, order_payload):
    response = client.post("/orders", json=order_payload([]))
    assert response.status_code == 400


def test_place_order_rejects_non_positive_quantity(services, make_product, order_payload):
    product = make_product()
    with pytest.raises(ValidationError):
        services.orders.place_order(order_payload([(product, 0)]))


def test_place_order_rejects_duplicate_reference(services, store, make_product, order_payload):
    product = make_product(stock=10)
    services.orders.place_order(order_payload([(product, 1)]))

    with pytest.raises(ValidationError):
        services.orders.place_order(order_payload([(product, 1)]))

    assert store.orders.count_documents({}) == 1
    assert stock_of(store, product) == 9


def test_place_order_rejects_reference_shaped_like_an_id(client, store, make_product, order_payload):
    product = make_product(stock=10)
    first = client.post("/orders", json=order_payload([(product, 1)], order_id="O1")).get_json()

    response = client.post(
        "/orders", json=order_payload([(product, 1)], order_id=first["order"]["id"], price=10000)
    )

    assert response.status_code == 400
    assert store.orders.count_documents({}) == 1
    assert stock_of(store, product) == 9


def test_find_order_by_id_never_matches_a_reference(services, store, make_product, order_payload):
    order = services.orders.place_order(order_payload([(make_product(), 1)]))
    stray_reference = str(ObjectId())
    store.orders.insert_one({"order_id": stray_reference, "price": 1})

    assert services.orders.find_order(str(order["_id"]))["order_id"] == "O1"
    assert services.orders.find_order(stray_reference, required=False) is None


def test_place_order_reserves_stock(services, store, make_product, order_payload):
    tea = make_product(stock=10)
    honey = make_product(title="Wild Honey", stock=4)

    services.orders.place_order(order_payload([(tea, 2), (honey, 3)]))

    assert stock_of(store, tea) == 8
    assert stock_of(store, honey) == 1


def test_insufficient_stock_rolls_back_every_reservation(services, store, make_product, order_payload):
    tea = make_product(stock=10)
    honey = make_product(title="Wild Honey", stock=1)

    with pytest.raises(ValidationError) as excinfo:
        services.orders.place_order(order_payload([(tea, 2), (honey, 3)]))

    assert "Insufficient stock" in excinfo.value.message
    assert stock_of(store, tea) == 10
    assert stock_of(store, honey) == 1
    assert store.orders.count_documents({}) == 0


def test_unknown_product_fails_placement(services, store, make_product, order_payload):
    tea = make_product(stock=10)
    ghost = {"_id": ObjectId(), "title": "Ghost"}

    with pytest.raises(NotFoundError):
        services.orders.place_order(order_payload([(tea, 1), (ghost, 1)]))

    assert stock_of(store, tea) == 10


def test_placement_without_reservation_leaves_stock(services, store, make_product, order_payload):
    services.orders.reserve_stock = False
    tea = make_product(stock=1)

    services.orders.place_order(order_payload([(tea, 5)]))

    assert stock_of(store, tea) == 1


def test_total_verification_rejects_mismatch(services, make_product, order_payload):
    services.orders.verify_total = True
    tea = make_product(price=250, stock=10)

    with pytest.raises(ValidationError):
        services.orders.place_order(order_payload([(tea, 2)], price=400))

    order = services.orders.place_order(order_payload([(tea, 2)], price=500))
    assert order["price"] == 500


def test_example_place_then_cancel(client, store, make_product, order_payload):
    product = make_product(stock=10)
    placed = client.post("/orders", json=order_payload([(product, 2)], order_id="O1", price=500))
    assert placed.get_json()["order"]["payment_method"] == "Cash in hand"
    stock_after_placement = stock_of(store, product)

    response = client.delete("/orders/O1")

    assert response.status_code == 200
    assert stock_of(store, product) == stock_after_placement + 2
    assert store.orders.find_one({"order_id": "O1"}) is None
    assert client.delete("/orders/O1").status_code == 404


def test_cancel_restores_every_line_item(services, store, make_product, order_payload):
    services.orders.reserve_stock = False
    tea = make_product(stock=3)
    honey = make_product(title="Wild Honey", stock=0)
    order = services.orders.place_order(order_payload([(tea, 2), (honey, 5)]))

    services.orders.cancel_order(str(order["_id"]))

    assert stock_of(store, tea) == 5
    assert stock_of(store, honey) == 5
    with pytest.raises(NotFoundError):
        services.orders.find_order(str(order["_id"]))


def test_cancel_missing_order_is_not_found(client, store, make_product):
    product = make_product(stock=7)

    response = client.delete("/orders/64b7f0c2a1b2c3d4e5f60799")

    assert response.status_code == 404
    assert response.get_json()["message"] == "Order not found"
    assert stock_of(store, product) == 7


def test_cancel_with_deleted_product_changes_nothing(client, services, store, make_product, order_payload):
    tea = make_product(stock=10)
    honey = make_product(title="Wild Honey", stock=10)
    services.orders.place_order(order_payload([(tea, 2), (honey, 1)]))
    services.catalog.delete_product(str(honey["_id"]))

    response = client.delete("/orders/O1")

    assert response.status_code == 500
    assert stock_of(store, tea) == 8
    assert store.orders.find_one({"order_id": "O1"}) is not None


def test_failed_restore_rolls_back_earlier_items(services, store, make_product, order_payload, monkeypatch):
    tea = make_product(stock=10)
    honey = make_product(title="Wild Honey", stock=10)
    services.orders.place_order(order_payload([(tea, 2), (honey, 3)]))

    original_restore = services.catalog.restore_stock
    calls = []

    def flaky_restore(unit, product_id, quantity):
        calls.append(product_id)
        if len(calls) == 2:
            raise PyMongoError("connection reset")
        return original_restore(unit, product_id, quantity)

    monkeypatch.setattr(services.catalog, "restore_stock", flaky_restore)

    with pytest.raises(PyMongoError):
        services.orders.cancel_order("O1")

    assert stock_of(store, tea) == 8
    assert stock_of(store, honey) == 7
    assert store.orders.find_one({"order_id": "O1"}) is not None


def test_cancellation_error_type(services, make_product, order_payload):
    tea = make_product(stock=10)
    services.orders.place_order(order_payload([(tea, 1)]))
    services.catalog.delete_product(str(tea["_id"]))

    with pytest.raises(CancellationError):
        services.orders.cancel_order("O1")


def test_list_orders_for_user(client, services, make_product, order_payload):
    tea = make_product(stock=10)
    services.orders.place_order(order_payload([(tea, 1)], order_id="A"))
    services.orders.place_order(order_payload([(tea, 1)], order_id="B", userId="someone-else"))

    response = client.get("/orders/64b7f0c2a1b2c3d4e5f60718")

    assert response.status_code == 200
    assert [order["order_id"] for order in response.get_json()["orders"]] == ["A"]


def test_list_all_orders_requires_admin(client, services, make_product, order_payload, admin_headers, user_headers):
    tea = make_product(stock=10)
    services.orders.place_order(order_payload([(tea, 1)]))

    assert client.get("/orders").status_code == 401
    assert client.get("/orders", headers=user_headers).status_code == 403

    response = client.get("/orders", headers=admin_headers)
    assert response.status_code == 200
    assert len(response.get_json()["orders"]) == 1


def test_admin_updates_order_status(client, services, make_product, order_payload, admin_headers):
    tea = make_product(stock=10)
    order = services.orders.place_order(order_payload([(tea, 1)]))

    response = client.put(
        f"/orders/{order['_id']}",
        json={"status": "completed", "deliveryStatus": "completed"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.get_json()["order"]
    assert body["status"] == "completed"
    assert body["delivery_status"] == "completed"


def test_admin_update_validates_input(client, services, make_product, order_payload, admin_headers):
    tea = make_product(stock=10)
    services.orders.place_order(order_payload([(tea, 1)]))

    assert client.put("/orders/O1", json={"status": "shipped"}, headers=admin_headers).status_code == 400
    assert client.put("/orders/O1", json={}, headers=admin_headers).status_code == 400
    assert (
        client.put("/orders/missing", json={"status": "refunded"}, headers=admin_headers).status_code
        == 404
    )
