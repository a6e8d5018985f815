"""Shared fixtures for the bootstrap layer tests."""

import pytest
from fastapi.testclient import TestClient

from slimcore import App


@pytest.fixture
def app() -> App:
    return App()


@pytest.fixture
def console_app() -> App:
    return App(scope="console")


@pytest.fixture
def client_for():
    """Build the app and wrap it in a client that returns error responses instead of raising."""

    def _client(app: App) -> TestClient:
        return TestClient(app.build(), raise_server_exceptions=False)

    return _client


@pytest.fixture
def json_headers():
    return {"Accept": "application/json"}
