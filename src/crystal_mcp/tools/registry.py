"""Named tool registration and dispatch."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

ToolHandler = Callable[[dict[str, object]], Awaitable[dict[str, object]]]


@dataclass(slots=True, frozen=True)
class ToolDispatchError(Exception):
    """A tool call that cannot be routed or whose arguments are invalid."""

    code: str
    message: str


@dataclass(slots=True)
class ToolRegistry:
    """In-memory tool registry preserving insertion order."""

    _handlers: dict[str, ToolHandler] = field(default_factory=dict)

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    def names(self) -> tuple[str, ...]:
        """Return registered tool names in registration order."""
        return tuple(self._handlers.keys())

    async def dispatch(self, name: str, arguments: dict[str, object]) -> dict[str, object]:
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolDispatchError(code="UNKNOWN_TOOL", message=f"Unknown tool: {name}")
        return await handler(arguments)
