"""
Tool registry for the agent engine.

Maps tool names to a definition (JSON schema shown to the model), a
handler and a group. Handlers take ``(input, context)`` and may be sync
or async; sync handlers run in a worker thread so they never block the
event loop. Business handlers (catalog search, quotation creation, ...)
are registered by the host application.
"""

from __future__ import annotations

import asyncio
import inspect

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal

from agent_engine.core.errors import ToolExecutionError, UnknownToolError
from agent_engine.models.session_models import ToolContext
from agent_engine.utils.logger import logger

ToolGroup = Literal["search", "project", "creation", "analysis"]
ToolHandler = Callable[[dict[str, Any], ToolContext], Any] | Callable[[dict[str, Any], ToolContext], Awaitable[Any]]

#: Groups always exposed to the model
BASE_GROUPS: tuple[ToolGroup, ...] = ("search",)

#: Keywords (lowercase substrings) that expose an extra group for one request
GROUP_KEYWORDS: dict[ToolGroup, tuple[str, ...]] = {
    "creation": (
        "cotiza", "crear", "crea", "agrega", "condicion", "exclusion", "recalcul",
        "incluye", "incluir", "añade", "añadir", "anade", "quita", "elimina",
        "modifica", "cambia", "actualiza", "edita", "reemplaza", "ajusta", "dame",
        "create", "add", "remove", "update", "edit", "replace",
    ),
    "project": (
        "proyecto", "ejecut", "cronograma", "orden de compra", "lista de equipo",
        "real vs", "costo real", "desviación", "comparar", "similar",
        "project", "schedule", "purchase order", "compare",
    ),
    "analysis": (
        "tdr", "términos de referencia", "analiz", "consultas", "observacion",
        "ambigüedad", "vacío", "pdf", "documento",
        "analy", "document", "review",
    ),
}


@dataclass(frozen=True, slots=True)
class RegisteredTool:
    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler
    group: ToolGroup = "search"

    def to_definition(self) -> dict[str, Any]:
        """Chat Completions tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    """Name-keyed tool dispatch with context-based relevance filtering."""

    def __init__(self, group_keywords: dict[ToolGroup, tuple[str, ...]] | None = None):
        self._tools: dict[str, RegisteredTool] = {}
        self._group_keywords = group_keywords if group_keywords is not None else GROUP_KEYWORDS

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def register(
        self,
        name: str,
        handler: ToolHandler,
        *,
        description: str = "",
        parameters: dict[str, Any] | None = None,
        group: ToolGroup = "search",
    ) -> None:
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        self._tools[name] = RegisteredTool(
            name=name,
            description=description,
            parameters=parameters or {"type": "object", "properties": {}},
            handler=handler,
            group=group,
        )

    def tool(
        self,
        name: str | None = None,
        *,
        description: str = "",
        parameters: dict[str, Any] | None = None,
        group: ToolGroup = "search",
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of ``register``. Description defaults to the handler docstring."""

        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(
                name or handler.__name__,
                handler,
                description=description or inspect.getdoc(handler) or "",
                parameters=parameters,
                group=group,
            )
            return handler

        return decorator

    def groups_for(self, message_text: str) -> set[ToolGroup]:
        """Groups relevant to a request, from keyword matches in its text."""
        lower = message_text.lower()
        groups: set[ToolGroup] = set(BASE_GROUPS)
        for group, keywords in self._group_keywords.items():
            if any(keyword in lower for keyword in keywords):
                groups.add(group)
        return groups

    def select_definitions(self, message_text: str) -> list[dict[str, Any]]:
        """Tool definitions exposed to the model for this request, in registration order."""
        groups = self.groups_for(message_text)
        return [tool.to_definition() for tool in self._tools.values() if tool.group in groups]

    def definitions(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        selected = self._tools.values() if names is None else (self._tools[n] for n in names if n in self._tools)
        return [tool.to_definition() for tool in selected]

    async def execute(self, name: str, tool_input: dict[str, Any], context: ToolContext) -> Any:
        """Run a tool handler.

        Raises:
            UnknownToolError: If ``name`` is not registered
            ToolExecutionError: If the handler raised
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)

        try:
            if inspect.iscoroutinefunction(tool.handler):
                return await tool.handler(tool_input, context)
            result = await asyncio.to_thread(tool.handler, tool_input, context)
            if inspect.isawaitable(result):
                result = await result
            return result
        except asyncio.CancelledError:
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            logger.warning(f"Tool {name} failed: {type(e).__name__}: {e}", tool_name=name)
            raise ToolExecutionError(name, str(e) or type(e).__name__) from e


__all__ = ["GROUP_KEYWORDS", "RegisteredTool", "ToolGroup", "ToolHandler", "ToolRegistry"]
