import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.middleware.base import BaseHTTPMiddleware

from slimcore.core.errors import ConfigurationError
from slimcore.core.middleware import (
    CorsMiddleware,
    MiddlewareDescriptor,
    RequestLogMiddleware,
    activate_middleware,
    descriptors_from_config,
)


def recording_middleware(name, calls):
    class Recorder(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            calls.append(name)
            return await call_next(request)

    Recorder.__name__ = name
    return Recorder


@pytest.fixture
def calls():
    return []


@pytest.fixture
def declared(calls):
    return {
        "A": recording_middleware("A", calls),
        "B": recording_middleware("B", calls),
        "C": recording_middleware("C", calls),
    }


def test_activation_is_reversed_and_filtered_by_scope(declared):
    fastapi = FastAPI()
    descriptors = [
        MiddlewareDescriptor(declared["A"], frozenset({"http"})),
        MiddlewareDescriptor(declared["B"], frozenset({"console"})),
        MiddlewareDescriptor(declared["C"], frozenset({"http"})),
    ]

    activated = activate_middleware(fastapi, descriptors, "http")

    assert [m.__name__ for m in activated] == ["C", "A"]
    assert [m.cls.__name__ for m in fastapi.user_middleware] == ["C", "A"]


def test_last_declared_middleware_runs_outermost(declared, calls):
    fastapi = FastAPI()

    @fastapi.get("/ping")
    def ping():
        return {"ok": True}

    descriptors = descriptors_from_config({declared["A"]: "http", declared["B"]: "console", declared["C"]: "http"})
    activate_middleware(fastapi, descriptors, "http")

    response = TestClient(fastapi).get("/ping")

    assert response.status_code == 200
    assert calls == ["C", "A"]


def test_console_scope_activates_console_entries(declared):
    fastapi = FastAPI()
    descriptors = descriptors_from_config({declared["A"]: "http", declared["B"]: "console,http"})

    activated = activate_middleware(fastapi, descriptors, "console")

    assert [m.__name__ for m in activated] == ["B"]


def test_descriptors_from_list_and_registry_keys():
    descriptors = descriptors_from_config(
        [{"middleware": "request_log", "on": "http"}, {"middleware": CorsMiddleware}],
        registry={"request_log": RequestLogMiddleware},
    )
    assert descriptors == [
        MiddlewareDescriptor(RequestLogMiddleware, frozenset({"http"})),
        MiddlewareDescriptor(CorsMiddleware, frozenset()),
    ]


def test_unknown_middleware_key():
    with pytest.raises(ConfigurationError, match="gzip"):
        descriptors_from_config({"gzip": "http"}, registry={})


def test_activation_after_start_is_rejected(declared):
    fastapi = FastAPI()
    TestClient(fastapi).get("/")
    with pytest.raises(RuntimeError):
        activate_middleware(fastapi, [MiddlewareDescriptor(declared["A"])], "http")


def test_trailing_slash_redirects_get(app, client_for):
    app.get("/items", (ItemsController, "index"))
    client = client_for(app)

    response = client.get("/items/", follow_redirects=False)

    assert response.status_code == 301
    assert response.headers["location"].endswith("/items")


def test_trailing_slash_rewrites_other_methods(app, client_for):
    app.post("/items", (ItemsController, "store"))
    response = client_for(app).post("/items/")

    assert response.status_code == 200
    assert response.text == "stored"


def test_method_override_header(app, client_for):
    app.route("/items/{id}", (ItemsController, "destroy"), methods=["DELETE"])
    response = client_for(app).post("/items/7", headers={"X-HTTP-Method-Override": "delete"})

    assert response.status_code == 200
    assert response.json() == {"deleted": "7"}


def test_cors_headers_for_allowed_origin(app, client_for, monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://app.example")
    app.set_config("middleware", {"cors": "http"})
    app.get("/items", (ItemsController, "index"))
    client = client_for(app)

    allowed = client.get("/items", headers={"Origin": "https://app.example"})
    denied = client.get("/items", headers={"Origin": "https://evil.example"})

    assert allowed.headers["access-control-allow-origin"] == "https://app.example"
    assert "access-control-allow-origin" not in denied.headers


def test_cors_answers_preflight(app, client_for, monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://app.example")
    app.set_config("middleware", {"cors": "http"})
    app.post("/items", (ItemsController, "store"))
    client = client_for(app)

    response = client.options(
        "/items",
        headers={
            "Origin": "https://app.example",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "https://app.example"
    assert "POST" in response.headers["access-control-allow-methods"]


def test_cors_rejects_preflight_from_unknown_origin(app, client_for, monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://app.example")
    app.set_config("middleware", {"cors": "http"})
    app.post("/items", (ItemsController, "store"))

    response = client_for(app).options(
        "/items",
        headers={"Origin": "https://evil.example", "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 400


def test_request_log_reports_failed_requests(app, client_for, caplog):
    caplog.set_level(logging.INFO, logger="slimcore.core.middleware")
    app.set_config("middleware", {"request_log": "http"})
    client = client_for(app)

    client.get("/nowhere")

    assert any("/nowhere - 404" in record.getMessage() for record in caplog.records)


class ItemsController:
    def index(self):
        return ["a", "b"]

    def store(self):
        return "stored"

    def destroy(self, id):
        return {"deleted": id}
