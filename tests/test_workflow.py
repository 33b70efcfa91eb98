from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId

import workflow
from errors import AuthorizationError, NotFoundError, StaleStateError, ValidationError


@pytest.fixture
def orders():
    return mongomock.MongoClient().db.order


def make_order(**fields):
    order = {"_id": ObjectId(), "user": ObjectId(), "paymentMethod": "card", "status": "pending_payment",
             "paymentScreenshot": "", "isPaid": False}
    order.update(fields)
    return order


def test_initial_status():
    assert workflow.initial_status("card") == "pending_payment"
    assert workflow.initial_status("cash") == "pending"


@pytest.mark.parametrize("location", [None, {}, {"lat": 41.3}, {"lng": 69.2}, {"lat": "", "lng": 69.2}, "41,69"])
def test_parse_location_missing(location):
    with pytest.raises(ValidationError, match="required"):
        workflow.parse_location(location)


@pytest.mark.parametrize("location", [
    {"lat": "abc", "lng": 69.2},
    {"lat": 41.3, "lng": "east"},
    {"lat": "nan", "lng": 69.2},
    {"lat": float("inf"), "lng": 69.2},
    {"lat": True, "lng": 69.2},
    {"lat": [41.3], "lng": 69.2},
])
def test_parse_location_not_a_number(location):
    with pytest.raises(ValidationError, match="must be numbers"):
        workflow.parse_location(location)


@pytest.mark.parametrize("location", [
    {"lat": 95, "lng": 69.2},
    {"lat": -90.5, "lng": 69.2},
    {"lat": 41.3, "lng": 181},
    {"lat": 41.3, "lng": -180.01},
])
def test_parse_location_out_of_range(location):
    with pytest.raises(ValidationError, match="out of valid range"):
        workflow.parse_location(location)


def test_parse_location_accepts_strings_and_edges():
    assert workflow.parse_location({"lat": "41.31", "lng": "69.28"}) == (41.31, 69.28)
    assert workflow.parse_location({"lat": 0, "lng": 0}) == (0.0, 0.0)
    assert workflow.parse_location({"lat": -90, "lng": 180}) == (-90.0, 180.0)


def test_validate_order_request_checks_in_order():
    with pytest.raises(ValidationError, match="items are required"):
        workflow.validate_order_request([], None, None)
    with pytest.raises(ValidationError, match="Delivery address is required"):
        workflow.validate_order_request([{"product": "x"}], None, None)
    assert workflow.validate_order_request([{"product": "x"}], {"region": "r"}, {"lat": 1, "lng": 2}) == (1.0, 2.0)


def test_snapshot_items_copies_product_fields():
    pid = ObjectId()
    catalog = {pid: {"_id": pid, "title": "Clay jug", "image": "/uploads/jug.png"}}
    items = [{"product": str(pid), "quantity": 2, "price": 10.0}]

    snapshot = workflow.snapshot_items(items, catalog.get)

    assert snapshot == [{"product": pid, "name": "Clay jug", "image": "/uploads/jug.png", "quantity": 2, "price": 10.0}]
    catalog[pid]["title"] = "Renamed"
    assert snapshot[0]["name"] == "Clay jug"


def test_snapshot_items_missing_product_uses_placeholder():
    items = [
        {"product": str(ObjectId()), "quantity": 1, "price": 5.0},
        {"product": "not-an-id", "quantity": 1, "price": 5.0},
    ]
    snapshot = workflow.snapshot_items(items, lambda oid: None)
    assert [i["name"] for i in snapshot] == ["Product", "Product"]
    assert [i["image"] for i in snapshot] == ["", ""]
    assert snapshot[1]["product"] == "not-an-id"


def test_owner_and_admin_can_view():
    order = make_order()
    owner = {"_id": order["user"], "role": "user"}
    stranger = {"_id": ObjectId(), "role": "user"}
    assert workflow.can_view_order(owner, order)
    assert workflow.can_view_order({"_id": ObjectId(), "role": "admin"}, order)
    assert workflow.can_view_order({"_id": ObjectId(), "isAdmin": True}, order)
    assert not workflow.can_view_order(stranger, order)


def test_check_screenshot_upload_preconditions():
    order = make_order()
    owner = {"_id": order["user"]}
    with pytest.raises(AuthorizationError):
        workflow.check_screenshot_upload(order, {"_id": ObjectId(), "role": "admin"}, True)
    with pytest.raises(ValidationError, match="Payment method is not card"):
        workflow.check_screenshot_upload(make_order(user=order["user"], paymentMethod="cash"), owner, True)
    with pytest.raises(ValidationError, match="Screenshot file is required"):
        workflow.check_screenshot_upload(order, owner, False)
    with pytest.raises(ValidationError, match="not awaiting payment"):
        workflow.check_screenshot_upload(make_order(user=order["user"], status="payment_confirmed"), owner, True)
    workflow.check_screenshot_upload(order, owner, True)
    workflow.check_screenshot_upload(make_order(user=order["user"], status="payment_uploaded"), owner, True)


def test_confirm_payment():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    order = make_order(status="payment_uploaded", paymentScreenshot="/uploads/p.png")
    assert workflow.confirm_payment(order, now=now) == {"status": "payment_confirmed", "isPaid": True, "paidAt": now}


def test_confirm_payment_before_upload_fails():
    with pytest.raises(ValidationError, match="not uploaded yet"):
        workflow.confirm_payment(make_order(status="pending_payment"))


def test_confirm_payment_without_screenshot_fails():
    with pytest.raises(ValidationError, match="Payment screenshot not found"):
        workflow.confirm_payment(make_order(status="payment_uploaded", paymentScreenshot=""))


def test_reject_payment_has_no_status_guard():
    expected = {"status": "pending_payment", "paymentScreenshot": ""}
    assert workflow.reject_payment(make_order(status="payment_uploaded", paymentScreenshot="/uploads/p.png")) == expected
    assert workflow.reject_payment(make_order(status="pending_payment")) == expected


def test_set_status():
    assert workflow.set_status(make_order(status="delivered"), "processing") == {"status": "processing"}
    with pytest.raises(ValidationError, match="Invalid status"):
        workflow.set_status(make_order(), "teleported")


def test_mark_delivered():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert workflow.mark_delivered(make_order(status="shipped"), now=now) == {"status": "delivered", "deliveredAt": now}
    with pytest.raises(ValidationError, match="already marked as delivered"):
        workflow.mark_delivered(make_order(status="delivered"))


def test_apply_transition_writes_changes(orders):
    order = make_order(status="payment_uploaded", paymentScreenshot="/uploads/p.png")
    orders.insert_one(order)
    updated = workflow.apply_transition(orders, order, workflow.confirm_payment(order))
    assert updated["status"] == "payment_confirmed"
    assert updated["isPaid"] is True
    assert updated["paidAt"] is not None


def test_apply_transition_detects_concurrent_change(orders):
    order = make_order(status="payment_uploaded", paymentScreenshot="/uploads/p.png")
    orders.insert_one(dict(order))
    stale_copy = dict(order)

    workflow.apply_transition(orders, order, workflow.reject_payment(order))

    with pytest.raises(StaleStateError):
        workflow.apply_transition(orders, stale_copy, workflow.confirm_payment(stale_copy))
    assert orders.find_one({"_id": order["_id"]})["status"] == "pending_payment"


def test_apply_transition_missing_order(orders):
    order = make_order()
    with pytest.raises(NotFoundError):
        workflow.apply_transition(orders, order, {"status": "processing"})
