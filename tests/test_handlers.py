import json

import pytest
from starlette.requests import Request

from slimcore import App
from slimcore.core.errors import MethodNotAllowed, ValidationFailure
from slimcore.core.handlers import GENERIC_ERROR_MESSAGE, format_trace, render_error
from slimcore.services.trace import Tracer


def make_request(accept: str = "") -> Request:
    headers = [(b"accept", accept.encode())] if accept else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers, "query_string": b""})


def test_json_error_when_client_accepts_json():
    response = render_error(404, "Not Found", ["no route"], request=make_request("application/json"))

    assert response.status_code == 404
    assert response.headers["content-type"] == "application/json"
    assert json.loads(response.body) == {"code": 404, "error": "Not Found", "messages": ["no route"]}


def test_json_error_with_explicit_code():
    request = make_request("text/html, Application/JSON;q=0.9")
    response = render_error(422, "Invalid", ["name is required"], code="E_NAME", request=request)
    assert json.loads(response.body)["code"] == "E_NAME"


def test_html_error_otherwise():
    response = render_error(500, "Broken <thing>", ["first", "second & third"], request=make_request("text/html"))

    text = response.body.decode()
    assert response.status_code == 500
    assert response.headers["content-type"].startswith("text/html")
    assert "Broken &lt;thing&gt;" in text
    assert "first<br/>second &amp; third" in text


def test_html_error_without_request():
    response = render_error(503, "Unavailable")
    assert response.headers["content-type"].startswith("text/html")


def test_plain_text_error_in_console():
    response = render_error(500, "Failed", ["line one", "line two"], request=make_request("application/json"), console=True)

    assert response.headers["content-type"].startswith("text/plain")
    assert response.body.decode() == "Failed\nline one\nline two"


class BrokenController:
    def boom(self):
        raise RuntimeError("boom")

    def teapot(self):
        error = RuntimeError("short and stout")
        error.status_code = 418
        raise error

    def invalid(self):
        raise ValidationFailure("Invalid user", errors=["name is required"])

    def locked(self):
        raise MethodNotAllowed(["POST", "GET"])

    def needs(self, count: int):
        return count


@pytest.fixture
def broken_app(app):
    app.get("/boom", (BrokenController, "boom"))
    app.get("/teapot", (BrokenController, "teapot"))
    app.get("/invalid", (BrokenController, "invalid"))
    app.get("/needs", (BrokenController, "needs"))
    app.get("/missing-method", (BrokenController, "missing"))
    app.get("/locked", (BrokenController, "locked"))
    return app


def test_not_found_route(broken_app, client_for, json_headers):
    response = client_for(broken_app).get("/does-not-exist", headers=json_headers)

    assert response.status_code == 404
    payload = response.json()
    assert payload["code"] == 404
    assert payload["error"] == "Not Found"
    assert payload["messages"][0] == "The requested resource /does-not-exist could not be found."


def test_missing_controller_method_is_404(broken_app, client_for, json_headers):
    response = client_for(broken_app).get("/missing-method", headers=json_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "Not Found"


def test_method_not_allowed(broken_app, client_for, json_headers):
    response = client_for(broken_app).post("/boom", headers=json_headers)

    assert response.status_code == 405
    assert "GET" in response.headers["allow"]
    assert response.json()["error"] == "Method Not Allowed"
    assert "Allowed methods" in response.json()["messages"][0]


def test_uncaught_exception_without_debug(broken_app, client_for, json_headers):
    response = client_for(broken_app).get("/boom", headers=json_headers)

    assert response.status_code == 500
    assert response.json() == {"code": 500, "error": "Internal Server Error", "messages": [GENERIC_ERROR_MESSAGE]}


def test_uncaught_exception_with_debug_includes_trace(broken_app, client_for, json_headers):
    broken_app.set_config("debug", True)
    response = client_for(broken_app).get("/boom", headers=json_headers)

    messages = response.json()["messages"]
    assert response.status_code == 500
    assert messages[0] == "Traceback (most recent call last):"
    assert any("in boom" in line for line in messages)
    assert messages[-1] == "RuntimeError: boom"
    assert not any("Exception Group" in line for line in messages)
    assert all("\n" not in line for line in messages)


def test_controller_raising_method_not_allowed(broken_app, client_for, json_headers):
    response = client_for(broken_app).get("/locked", headers=json_headers)

    assert response.status_code == 405
    assert response.headers["allow"] == "GET, POST"
    assert response.json() == {
        "code": 405,
        "error": "Method Not Allowed",
        "messages": ["Method GET is not allowed. Allowed methods: GET, POST"],
    }


def test_format_trace_skips_implicit_context():
    try:
        try:
            raise KeyError("inner")
        except KeyError:
            raise RuntimeError("outer")
    except RuntimeError as e:
        lines = format_trace(e)

    assert lines[0] == "Traceback (most recent call last):"
    assert lines[-1] == "RuntimeError: outer"
    assert not any("KeyError" in line for line in lines)


def test_format_trace_follows_explicit_causes():
    try:
        try:
            raise KeyError("inner")
        except KeyError as inner:
            raise RuntimeError("outer") from inner
    except RuntimeError as e:
        lines = format_trace(e)

    assert "KeyError: 'inner'" in lines
    assert "The above exception was the direct cause of the following exception:" in lines
    assert lines[-1] == "RuntimeError: outer"


def test_debug_trace_uses_trace_service(broken_app, client_for, json_headers):
    broken_app.set_configs({"debug": True, "services": {"trace": {"provider": "trace", "settings": {"limit": 1}}}})
    response = client_for(broken_app).get("/boom", headers=json_headers)

    assert isinstance(broken_app.resolve("trace"), Tracer)
    assert response.json()["messages"][-1] == "RuntimeError: boom"


def test_exception_status_code_is_kept(broken_app, client_for, json_headers):
    response = client_for(broken_app).get("/teapot", headers=json_headers)
    assert response.status_code == 418


def test_validation_failures_propagate_as_errors(broken_app, client_for, json_headers):
    response = client_for(broken_app).get("/invalid", headers=json_headers)
    assert response.status_code == 500


def test_dependency_resolution_error_is_internal_error(broken_app, client_for):
    response = client_for(broken_app).get("/needs")

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("text/html")


def test_handlers_log_through_logger_service(broken_app, client_for, caplog):
    broken_app.set_configs({"services": {"applog": {"provider": "logger", "settings": {"handlers": []}}}})
    broken_app.container.alias({"logger": "applog"})

    with caplog.at_level("ERROR", logger="applog"):
        client_for(broken_app).get("/boom")

    assert any(r.name == "applog" and "boom" in r.getMessage() for r in caplog.records)


def test_app_error_helper_uses_runtime_scope():
    console = App(scope="console")
    response = console.error(500, "Failed", ["reason"])
    assert response.body.decode() == "Failed\nreason"
