import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from errors import NotFoundError, StaleStateError, register_error_handlers


def make_app(show_stack):
    app = FastAPI()
    register_error_handlers(app, show_stack=show_stack)

    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    @app.get("/missing")
    def missing():
        raise NotFoundError("Order not found")

    @app.get("/stale")
    def stale():
        raise StaleStateError()

    @app.get("/items/{item_id}")
    def item(item_id: int):
        return {"id": item_id}

    return TestClient(app, raise_server_exceptions=False)


def test_unhandled_error_hides_details_in_production():
    res = make_app(show_stack=False).get("/boom")
    assert res.status_code == 500
    assert res.json() == {"message": "Internal server error"}


def test_unhandled_error_includes_stack_outside_production():
    res = make_app(show_stack=True).get("/boom")
    assert res.status_code == 500
    body = res.json()
    assert body["message"] == "kaboom"
    assert any("RuntimeError" in line for line in body["stack"])


@pytest.mark.parametrize("path,status,message", [
    ("/missing", 404, "Order not found"),
    ("/stale", 409, StaleStateError.default_message),
    ("/nowhere", 404, "Not Found"),
])
def test_http_errors_are_message_objects(path, status, message):
    res = make_app(show_stack=False).get(path)
    assert res.status_code == status
    assert res.json() == {"message": message}


def test_request_validation_is_400():
    res = make_app(show_stack=False).get("/items/abc")
    assert res.status_code == 400
    assert res.json()["message"].startswith("item_id:")
