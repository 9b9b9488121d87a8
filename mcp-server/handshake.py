"""
Handshake validation - decides whether a request may open a new session.

Only a POST carrying a single, well-formed MCP `initialize` request
qualifies. Everything else arriving without a known session is rejected
before any state is created.
"""

from typing import Any

from mcp.types import INVALID_REQUEST, InitializeRequest, JSONRPCRequest
from pydantic import ValidationError

from session_transport import error_envelope

NO_SESSION_MESSAGE = "Invalid or missing session"


def is_initialize_request(body: Any) -> bool:
    """Structural check for a JSON-RPC `initialize` request."""
    if not isinstance(body, dict):
        return False
    try:
        request = JSONRPCRequest.model_validate(body)
        InitializeRequest.model_validate({"method": request.method, "params": request.params})
    except ValidationError:
        return False
    return True


def validate_handshake(http_method: str, body: Any) -> bool:
    return http_method.upper() == "POST" and is_initialize_request(body)


def invalid_session_error() -> dict[str, Any]:
    return error_envelope(INVALID_REQUEST, NO_SESSION_MESSAGE)
