#!/usr/bin/env python3
"""
Todo MCP Server (Streamable HTTP)
Single /mcp endpoint multiplexing many stateful MCP sessions.

- Requests carrying a known `mcp-session-id` header go to that session's transport.
- Requests without one must be an `initialize` POST, which opens a new session.
- Listens on HOST/PORT from the environment (defaults 0.0.0.0:8787).
"""

import contextlib
import json
import logging
import os
import uuid
from typing import Any, Callable, Mapping, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from mcp.server import Server
from mcp.types import INTERNAL_ERROR

from handshake import invalid_session_error, validate_handshake
from server import TodoStore, create_server
from session_registry import SessionRegistry
from session_transport import (
    MCP_SESSION_ID_HEADER,
    SessionClosedError,
    SessionTransport,
    error_envelope,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8787
DEFAULT_HOST = "0.0.0.0"


def new_session_id() -> str:
    return str(uuid.uuid4())


class SessionRouter:
    """Resolves the session for each request, opening new ones on handshake.

    Also acts as the listener for every transport it creates, keeping the
    registry in step with transport state.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        server_factory: Callable[[], Server],
        session_id_generator: Callable[[], str] = new_session_id,
    ):
        self.registry = registry
        self.server_factory = server_factory
        self.session_id_generator = session_id_generator

    async def route(self, http_method: str, headers: Mapping[str, str], body: Any) -> Response:
        session_id = headers.get(MCP_SESSION_ID_HEADER)
        session = self.registry.lookup(session_id)

        if session is not None:
            try:
                return await session.transport.handle_request(http_method, session_id, body)
            except SessionClosedError:
                logger.info("Session %s closed while routing; treating as unknown", session_id)

        if not validate_handshake(http_method, body):
            return JSONResponse(invalid_session_error(), status_code=400)

        server = self.server_factory()
        transport = SessionTransport(
            server,
            session_id_generator=self.session_id_generator,
            listener=self,
        )
        return await transport.handle_request(http_method, None, body)

    def on_session_initialized(self, transport: SessionTransport) -> None:
        self.registry.create(transport.session_id, transport, transport.server)
        logger.info("Registered session %s (%d active)", transport.session_id, len(self.registry))

    def on_session_closed(self, transport: SessionTransport) -> None:
        if transport.session_id is not None:
            self.registry.remove(transport.session_id)

    async def shutdown(self) -> None:
        for session in self.registry.sessions():
            await session.transport.close()


async def _read_json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    return json.loads(raw)


def create_app(store: Optional[TodoStore] = None) -> FastAPI:
    store = store if store is not None else TodoStore()
    registry = SessionRegistry()
    router = SessionRouter(registry, server_factory=lambda: create_server(store))

    @contextlib.asynccontextmanager
    async def lifespan(_app):
        logger.info("Todo MCP server ready")
        yield
        await router.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.store = store
    app.state.registry = registry
    app.state.router = router

    # Browser-based clients need to read the session header
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[MCP_SESSION_ID_HEADER],
    )

    # Health check endpoint
    @app.get("/")
    async def health_check():
        return {
            "status": "ok",
            "service": "todo-mcp-server",
            "sessions": len(registry),
            "todos": len(store),
        }

    @app.api_route("/mcp", methods=["GET", "POST", "DELETE"])
    async def mcp_endpoint(request: Request) -> Response:
        try:
            body = await _read_json_body(request)
            return await router.route(request.method, request.headers, body)
        except Exception:
            logger.exception("MCP request failed")
            return JSONResponse(
                error_envelope(INTERNAL_ERROR, "Internal error"),
                status_code=500,
            )

    return app


def main():
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    host = os.environ.get("HOST", DEFAULT_HOST)
    port = int(os.environ.get("PORT", str(DEFAULT_PORT)))
    logger.info("Todo MCP server listening on http://%s:%d/mcp", host, port)
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
