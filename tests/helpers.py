"""Request builders shared by the test modules."""

from mcp.server import Server
from mcp.types import CallToolRequest, CallToolRequestParams, CallToolResult

PROTOCOL_VERSION = "2025-06-18"


def initialize_body(request_id=1, protocol_version=PROTOCOL_VERSION):
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": protocol_version,
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "1.0.0"},
        },
    }


def call_tool_body(name, arguments=None, request_id=2):
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments or {}},
    }


async def call_tool(server: Server, name: str, arguments=None) -> CallToolResult:
    request = CallToolRequest(
        method="tools/call",
        params=CallToolRequestParams(name=name, arguments=arguments),
    )
    result = await server.request_handlers[CallToolRequest](request)
    return result.root
