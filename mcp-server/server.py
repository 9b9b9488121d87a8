#!/usr/bin/env python3
"""
Todo MCP Server - tools and task store
A minimal todo list exposed as MCP tools: add_todo, list_todo and edit_todo.

Every session gets its own MCP Server (see create_server), but all of them
share one TodoStore.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from mcp.server import Server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

SERVER_NAME = "todo-server"
SERVER_VERSION = "1.0.0"


# Todo model
class Todo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    text: str
    completed: bool = False
    created_at: datetime
    updated_at: datetime

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class TodoStore:
    """In-memory todo list shared by every session.

    All reads and writes go through one lock, so ids stay unique and
    timestamps never run backwards even with concurrent sessions.
    Callers always get copies; the stored records are never handed out.
    """

    def __init__(self):
        self._todos: list[Todo] = []
        self._index: dict[str, Todo] = {}
        self._lock = threading.Lock()
        self._last_timestamp: Optional[datetime] = None

    def _now(self) -> datetime:
        # caller holds the lock
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def add(self, text: str, completed: bool = False) -> Todo:
        with self._lock:
            todo_id = str(uuid.uuid4())
            while todo_id in self._index:
                todo_id = str(uuid.uuid4())
            timestamp = self._now()
            todo = Todo(
                id=todo_id,
                text=text,
                completed=completed,
                created_at=timestamp,
                updated_at=timestamp,
            )
            self._todos.append(todo)
            self._index[todo.id] = todo
            return todo.model_copy()

    def list_todos(self, completed: Optional[bool] = None) -> list[Todo]:
        with self._lock:
            return [
                t.model_copy()
                for t in self._todos
                if completed is None or t.completed == completed
            ]

    def edit(
        self,
        todo_id: str,
        text: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> Optional[Todo]:
        """Update the given fields of a todo. Returns None if the id is unknown."""
        with self._lock:
            todo = self._index.get(todo_id)
            if todo is None:
                return None
            if text is not None:
                todo.text = text
            if completed is not None:
                todo.completed = completed
            todo.updated_at = self._now()
            return todo.model_copy()

    def __len__(self) -> int:
        with self._lock:
            return len(self._todos)


TOOLS = [
    Tool(
        name="add_todo",
        description="Add a todo item",
        inputSchema={
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "minLength": 1,
                    "description": "Todo text (required)"
                },
                "completed": {
                    "type": "boolean",
                    "description": "Initial completion state (default: false)"
                }
            },
            "required": ["text"]
        }
    ),
    Tool(
        name="list_todo",
        description="List todos",
        inputSchema={
            "type": "object",
            "properties": {
                "completed": {
                    "type": "boolean",
                    "description": "Only return todos with this completion state"
                }
            }
        }
    ),
    Tool(
        name="edit_todo",
        description="Edit a todo item",
        inputSchema={
            "type": "object",
            "properties": {
                "id": {
                    "type": "string",
                    "minLength": 1,
                    "description": "ID of the todo to edit"
                },
                "text": {
                    "type": "string",
                    "minLength": 1,
                    "description": "New text (optional)"
                },
                "completed": {
                    "type": "boolean",
                    "description": "New completion state (optional)"
                }
            },
            "required": ["id"]
        }
    ),
]

ToolOutput = tuple[list[TextContent], dict[str, Any]]


class ToolFailure(Exception):
    """A tool raised unexpectedly; the client only sees a generic message."""


def _output(text: str, structured: dict[str, Any]) -> ToolOutput:
    return [TextContent(type="text", text=text)], structured


def _format_todo_line(todo: Todo) -> str:
    mark = "[x]" if todo.completed else "[ ]"
    return f"- {mark} {todo.text} ({todo.id})"


def add_todo(store: TodoStore, arguments: dict[str, Any]) -> ToolOutput:
    todo = store.add(arguments["text"], completed=arguments.get("completed", False))
    logger.debug("Added todo %s", todo.id)
    return _output(f"Added todo: {todo.text}", {"todo": todo.to_wire()})


def list_todo(store: TodoStore, arguments: dict[str, Any]) -> ToolOutput:
    todos = store.list_todos(completed=arguments.get("completed"))
    if not todos:
        text = "No todos."
    else:
        text = "\n".join(_format_todo_line(t) for t in todos)
    return _output(text, {"todos": [t.to_wire() for t in todos]})


def edit_todo(store: TodoStore, arguments: dict[str, Any]) -> ToolOutput:
    todo_id = arguments["id"]
    todo = store.edit(todo_id, text=arguments.get("text"), completed=arguments.get("completed"))
    if todo is None:
        return _output(f"Todo not found: {todo_id}", {"error": "Todo not found", "id": todo_id})
    logger.debug("Updated todo %s", todo.id)
    return _output(f"Updated todo: {todo.text}", {"todo": todo.to_wire()})


TOOL_FUNCTIONS = {
    "add_todo": add_todo,
    "list_todo": list_todo,
    "edit_todo": edit_todo,
}


def create_server(store: TodoStore) -> Server:
    """Build the MCP server for one session, backed by the shared store.

    Arguments are checked against each tool's inputSchema by the SDK before
    the tool runs.
    """
    app = Server(SERVER_NAME, version=SERVER_VERSION)

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        """List available todo tools."""
        return list(TOOLS)

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> ToolOutput:
        """Handle tool execution."""
        tool = TOOL_FUNCTIONS.get(name)
        if tool is None:
            raise ValueError(f"Unknown tool: {name}")
        try:
            return tool(store, arguments)
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            raise ToolFailure("Internal error") from exc

    return app
