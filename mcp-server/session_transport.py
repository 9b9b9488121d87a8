"""
Session transport - one MCP conversation over Streamable HTTP (JSON responses).

A transport starts UNINITIALIZED, becomes ACTIVE when it accepts the
`initialize` request (that is also when it picks its session id), and ends
CLOSED. State changes are reported synchronously to a SessionListener:
the id is assigned before `on_session_initialized` fires, and
`on_session_closed` fires before the transport reports itself CLOSED.

Everything after `initialize` is handed to the session's MCP Server through
its registered request handlers.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from fastapi.responses import JSONResponse, Response
from mcp.server import Server
from mcp.shared.exceptions import McpError
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    CallToolRequest,
    ErrorData,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCMessage,
    JSONRPCRequest,
    ListToolsRequest,
    PingRequest,
)
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"

# Streamable HTTP transport-level error codes
SERVER_ERROR = -32000
SESSION_NOT_FOUND = -32001

# JSON-RPC methods served through the MCP Server's request handlers
REQUEST_TYPES = {
    "ping": PingRequest,
    "tools/list": ListToolsRequest,
    "tools/call": CallToolRequest,
}


class TransportState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


class SessionClosedError(Exception):
    def __init__(self, session_id: Optional[str]):
        super().__init__(f"Session is closed: {session_id}")
        self.session_id = session_id


class MalformedMessageError(Exception):
    """The request body is not a JSON-RPC message (or batch of them)."""


class SessionListener(Protocol):
    def on_session_initialized(self, transport: "SessionTransport") -> None: ...

    def on_session_closed(self, transport: "SessionTransport") -> None: ...


def error_envelope(code: int, message: str, request_id: Any = None) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "error": ErrorData(code=code, message=message).model_dump(exclude_none=True),
        "id": request_id,
    }


def result_envelope(request_id: Any, result: BaseModel) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "result": result.model_dump(by_alias=True, mode="json", exclude_none=True),
    }


def negotiate_protocol_version(requested: Any) -> str:
    requested = str(requested)
    if requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return LATEST_PROTOCOL_VERSION


class SessionTransport:
    """Protocol state machine bound to a single session and its MCP server."""

    def __init__(
        self,
        server: Server,
        session_id_generator: Callable[[], str],
        listener: Optional[SessionListener] = None,
    ):
        self.server = server
        self.listener = listener
        self._session_id_generator = session_id_generator
        self._init_options = server.create_initialization_options()
        self._session_id: Optional[str] = None
        self._state = TransportState.UNINITIALIZED
        self._lock = asyncio.Lock()

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def state(self) -> TransportState:
        return self._state

    async def handle_request(self, http_method: str, session_id: Optional[str], body: Any) -> Response:
        """Handle one HTTP exchange addressed to this session."""
        async with self._lock:
            if self._state is TransportState.CLOSED:
                raise SessionClosedError(self._session_id)

            method = http_method.upper()
            if method == "POST":
                return await self._handle_post(session_id, body)

            if self._state is TransportState.UNINITIALIZED:
                return self._error_response(400, SERVER_ERROR, "Bad Request: Server not initialized")
            if session_id != self._session_id:
                return self._error_response(404, SESSION_NOT_FOUND, "Session not found")

            if method == "DELETE":
                self._close()
                return Response(status_code=200)

            response = self._error_response(405, SERVER_ERROR, "Method Not Allowed")
            response.headers["Allow"] = "POST, DELETE"
            return response

    async def close(self) -> None:
        async with self._lock:
            self._close()

    def _close(self) -> None:
        if self._state is TransportState.CLOSED:
            return
        try:
            if self.listener is not None:
                self.listener.on_session_closed(self)
        finally:
            self._state = TransportState.CLOSED
            logger.info("Session %s closed", self._session_id)

    async def _handle_post(self, session_id: Optional[str], body: Any) -> Response:
        messages, is_batch = self._parse(body)
        requests = [m for m in messages if isinstance(m, JSONRPCRequest)]

        init_requests = [r for r in requests if r.method == "initialize"]
        if init_requests:
            if self._state is TransportState.ACTIVE:
                return self._error_response(400, INVALID_REQUEST, "Invalid Request: Server already initialized")
            if is_batch:
                return self._error_response(
                    400, INVALID_REQUEST, "Invalid Request: Only one initialization request is allowed"
                )
            return self._initialize(init_requests[0])

        if self._state is TransportState.UNINITIALIZED:
            return self._error_response(400, SERVER_ERROR, "Bad Request: Server not initialized")
        if session_id != self._session_id:
            return self._error_response(404, SESSION_NOT_FOUND, "Session not found")

        if not requests:
            # notifications and client responses only
            return Response(status_code=202, headers=self._headers())

        responses = [await self._dispatch(r) for r in requests]
        payload = responses if is_batch else responses[0]
        return JSONResponse(payload, headers=self._headers())

    def _parse(self, body: Any) -> tuple[list[Any], bool]:
        is_batch = isinstance(body, list)
        raw_messages = body if is_batch else [body]
        if not raw_messages:
            raise MalformedMessageError("Empty JSON-RPC batch")
        try:
            return [JSONRPCMessage.model_validate(m).root for m in raw_messages], is_batch
        except ValidationError as exc:
            raise MalformedMessageError("Body is not a JSON-RPC message") from exc

    def _initialize(self, request: JSONRPCRequest) -> Response:
        try:
            params = InitializeRequestParams.model_validate(request.params or {})
        except ValidationError:
            return self._error_response(400, INVALID_REQUEST, "Invalid Request: Malformed initialize params")

        self._session_id = self._session_id_generator()
        protocol_version = negotiate_protocol_version(params.protocolVersion)
        self._state = TransportState.ACTIVE
        logger.info(
            "Session %s initialized (client=%s, protocol=%s)",
            self._session_id,
            params.clientInfo.name,
            protocol_version,
        )
        if self.listener is not None:
            self.listener.on_session_initialized(self)

        options = self._init_options
        result = InitializeResult(
            protocolVersion=protocol_version,
            capabilities=options.capabilities,
            serverInfo=Implementation(name=options.server_name, version=options.server_version),
            instructions=options.instructions,
        )
        return JSONResponse(result_envelope(request.id, result), headers=self._headers())

    async def _dispatch(self, request: JSONRPCRequest) -> dict[str, Any]:
        logger.debug("Session %s: %s (id=%s)", self._session_id, request.method, request.id)
        request_type = REQUEST_TYPES.get(request.method)
        handler = self.server.request_handlers.get(request_type) if request_type else None
        if handler is None:
            return error_envelope(METHOD_NOT_FOUND, f"Method not found: {request.method}", request.id)

        try:
            typed_request = request_type.model_validate({"method": request.method, "params": request.params})
        except ValidationError:
            return error_envelope(INVALID_PARAMS, f"Invalid params for {request.method}", request.id)

        try:
            result = await handler(typed_request)
        except McpError as err:
            return error_envelope(err.error.code, err.error.message, request.id)
        except Exception:
            logger.exception("Session %s: %s failed", self._session_id, request.method)
            return error_envelope(INTERNAL_ERROR, "Internal error", request.id)
        return result_envelope(request.id, result)

    def _headers(self) -> dict[str, str]:
        if self._session_id is None:
            return {}
        return {MCP_SESSION_ID_HEADER: self._session_id}

    def _error_response(self, status_code: int, code: int, message: str) -> JSONResponse:
        return JSONResponse(error_envelope(code, message), status_code=status_code, headers=self._headers())
