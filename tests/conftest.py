"""Shared fixtures for the todo MCP server tests."""

import pytest
from fastapi.testclient import TestClient
from mcp.server import Server

from server import TodoStore, create_server
from server_http import create_app


@pytest.fixture()
def store() -> TodoStore:
    return TodoStore()


@pytest.fixture()
def server(store: TodoStore) -> Server:
    return create_server(store)


@pytest.fixture()
def app(store: TodoStore):
    return create_app(store)


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client
