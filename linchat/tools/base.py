from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("additionalProperties", False)
    return s


class Tool(ABC):
    """
    A locally executable tool the model may call.

    ``execute`` receives the parsed arguments and the prior conversation
    history and returns any JSON-serializable value.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @abstractmethod
    async def execute(self, arguments: dict, history: list) -> Any: ...

    def to_openai_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": normalize_schema(self.parameters),
            },
        }


Executor = Callable[[dict, list], Union[Any, Awaitable[Any]]]


class FunctionTool(Tool):
    """Wraps a plain (sync or async) ``executor(arguments, history)``."""

    def __init__(
        self,
        name: str,
        executor: Executor,
        *,
        description: str = "",
        parameters: dict | None = None,
    ) -> None:
        self._name = name
        self._executor = executor
        self._description = description or (inspect.getdoc(executor) or "")
        self._parameters = parameters or {"type": "object", "properties": {}}

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict:
        return self._parameters

    async def execute(self, arguments: dict, history: list) -> Any:
        result = self._executor(arguments, history)
        if inspect.isawaitable(result):
            result = await result
        return result
