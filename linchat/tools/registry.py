from __future__ import annotations

import logging
from importlib.metadata import entry_points

from linchat.tools.base import Executor, FunctionTool, Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        executor: Executor,
        *,
        description: str = "",
        parameters: dict | None = None,
        overwrite: bool = False,
    ) -> Tool:
        tool = FunctionTool(
            name, executor, description=description, parameters=parameters
        )
        self.register(tool, overwrite=overwrite)
        return tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise KeyError(name)
        return t

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def names(self) -> list[str]:
        return [t.name for t in self.list()]

    def to_openai_schema(self) -> list[dict]:
        return [t.to_openai_schema() for t in self.list()]

    def get_schemas_by_names(self, names: list[str]) -> list[dict]:
        """Schemas for the named tools, in the given order; unknown names are skipped."""
        schemas: list[dict] = []
        seen: set[str] = set()
        for name in names:
            tool = self._tools.get(name)
            if tool is None or name in seen:
                continue
            seen.add(name)
            schemas.append(tool.to_openai_schema())
        return schemas

    def load_plugins(
        self,
        *,
        enabled: bool,
        group: str = "linchat.tools",
        allow_tools: set[str] | None = None,
    ) -> int:
        """Register tools advertised through the *group* entry point."""
        if not enabled:
            return 0
        loaded = 0
        for ep in entry_points(group=group):
            if allow_tools and ep.name not in allow_tools:
                continue
            tool_cls = ep.load()
            self.register(tool_cls())
            loaded += 1
            logger.info("Loaded tool plugin %s", ep.name)
        return loaded
