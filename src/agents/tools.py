"""Functions the speech model may call during a conversation."""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

LOGGER = logging.getLogger(__name__)

ToolResult = dict[str, Any]
ToolHandler = Callable[[dict[str, Any]], ToolResult | Awaitable[ToolResult]]


class ToolSpec(BaseModel):
    """Name, description and JSON schema announced to the model."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, tuple[ToolSpec, ToolHandler]] = {}

    def register(self, spec: ToolSpec, handler: ToolHandler) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = (spec, handler)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def manifest(self) -> list[dict[str, Any]]:
        """Tool list in the shape the realtime session update expects."""

        return [
            {"type": "function", **spec.model_dump()}
            for spec, _handler in self._tools.values()
        ]

    async def invoke(self, name: str, arguments: str | dict[str, Any] | None) -> ToolResult:
        """Run a tool; failures are reported to the model as ``{"error": ...}``."""

        entry = self._tools.get(name)
        if entry is None:
            LOGGER.warning("Model called unknown function %s", name)
            return {"error": f"Unknown function: {name}"}

        if isinstance(arguments, str):
            try:
                args = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                LOGGER.warning("Function %s called with invalid JSON arguments: %s", name, arguments)
                return {"error": "Arguments are not valid JSON."}
        else:
            args = arguments or {}
        if not isinstance(args, dict):
            return {"error": "Arguments must be a JSON object."}

        _spec, handler = entry
        try:
            result = handler(args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            LOGGER.exception("Function %s failed", name)
            return {"error": str(exc) or exc.__class__.__name__}

        LOGGER.info("Function %s(%s) -> %s", name, args, result)
        return result
