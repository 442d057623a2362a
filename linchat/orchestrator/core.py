"""
Orchestrator core -- the bounded tool-calling loop of one user turn.

The orchestrator:
1. Formats the history and the new user input into a request
2. Streams the response, re-yielding every parsed chunk
3. Accumulates the round's tool calls
4. Executes them locally (concurrently when allowed) and yields each result
5. Appends the assistant tool-call message and the tool messages, and loops
6. Stops when the model answers without tools, after ``max_iterations``
   tool rounds, on cancellation, or on a fatal upstream error

It never raises for those outcomes: cancellation becomes a marker content
chunk and fatal errors become an ``ErrorChunk``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

import httpx

from linchat.llm.catalog import ModelCatalog, ModelInfo
from linchat.llm.client import CompletionClient
from linchat.llm.errors import StreamCancelled, StreamError, UpstreamAPIError
from linchat.llm.formatter import (
    build_request_body,
    build_user_content,
    format_message_for_api,
    with_date_context,
)
from linchat.llm.parts_builder import PartsBuilder
from linchat.llm.types import (
    AbortSignal,
    ContentChunk,
    ErrorChunk,
    FinishChunk,
    ParsedChunk,
    ToolCall,
    ToolCallDeltaChunk,
    ToolResultChunk,
)
from linchat.tools.registry import ToolRegistry
from linchat.tools.validation import validate_arguments
from linchat.types import ErrorCode, ToolResult

logger = logging.getLogger(__name__)

CANCEL_MARKER = "\n\n[STREAM CANCELED]"


class LoopState(Enum):
    AWAITING_RESPONSE = "awaiting_response"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass
class TurnRequest:
    """Everything the loop needs to answer one user message."""

    query: str
    model_id: str
    history: list[Any] = field(default_factory=list)
    attachments: list[Any] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)
    tool_names: list[str] = field(default_factory=list)
    custom_instructions: str = ""
    date_context: bool = True


class Orchestrator:
    """
    Main tool-calling loop.

    Parameters
    ----------
    client : CompletionClient
        Streams completions from the endpoint.
    registry : ToolRegistry
        Locally executable tools.
    catalog : ModelCatalog
        Capabilities of the selectable models.
    max_iterations : int
        Max tool-execution rounds per turn before the loop stops.
    tool_timeout : float
        Max seconds for a single tool execution.
    parallel_tools : bool
        Run the tool calls of one round concurrently.
    """

    def __init__(
        self,
        client: CompletionClient,
        registry: ToolRegistry,
        catalog: ModelCatalog,
        max_iterations: int = 4,
        tool_timeout: float = 30.0,
        parallel_tools: bool = True,
    ) -> None:
        self.client = client
        self.registry = registry
        self.catalog = catalog
        self.max_iterations = max_iterations
        self.tool_timeout = tool_timeout
        self.parallel_tools = parallel_tools
        self.state = LoopState.DONE
        self.tool_rounds = 0

    async def run(
        self,
        request: TurnRequest,
        signal: AbortSignal | None = None,
    ) -> AsyncIterator[ParsedChunk]:
        """
        Answer *request*, yielding chunks for the parts builder.

        Tool results are yielded as ``ToolResultChunk`` objects as soon as
        each tool finishes.
        """
        signal = signal or AbortSignal()
        model = self.catalog.find(request.model_id)
        base_messages = self.build_messages(request)
        has_pdf = any(a.type == "pdf" for a in request.attachments)

        schemas = self.registry.get_schemas_by_names(self._tool_names(request, model))
        tools_enabled = (model is None or model.tool_use) and bool(schemas)

        intermediate: list[dict[str, Any]] = []
        self.tool_rounds = 0

        try:
            while True:
                self._transition(LoopState.AWAITING_RESPONSE)
                if signal.aborted:
                    raise StreamCancelled()

                body = build_request_body(
                    model_id=request.model_id,
                    model=model,
                    messages=base_messages + intermediate,
                    parameters=request.parameters,
                    tools=schemas if tools_enabled else None,
                    has_pdf=has_pdf,
                )

                round_calls = PartsBuilder()
                async for chunk in self.client.stream(body, signal):
                    if isinstance(chunk, ToolCallDeltaChunk):
                        round_calls.apply(chunk)
                    elif isinstance(chunk, FinishChunk):
                        # Consumers close the round on the finish chunk, so
                        # synthesized ids must reach them first.
                        for id_delta in self._assign_missing_ids(round_calls):
                            yield id_delta
                    yield chunk
                for id_delta in self._assign_missing_ids(round_calls):
                    yield id_delta

                calls = round_calls.to_tool_call_list()
                if not calls or not tools_enabled:
                    break

                if self.tool_rounds >= self.max_iterations:
                    logger.info(
                        "Stopping after %d tool rounds; model still requested %d tool(s)",
                        self.tool_rounds,
                        len(calls),
                    )
                    break

                if signal.aborted:
                    raise StreamCancelled()

                self._transition(LoopState.EXECUTING_TOOLS)
                results: dict[int, ToolResult] = {}
                async for position, result in self._execute_tool_calls(calls, request.history):
                    results[position] = result
                    yield ToolResultChunk(id=result.tool_call_id, result=result.content)

                self.tool_rounds += 1
                intermediate.append(
                    {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [c.to_wire() for c in calls],
                    }
                )
                intermediate.extend(results[i].to_message() for i in sorted(results))

        except StreamCancelled:
            logger.info("Turn cancelled after %d tool rounds", self.tool_rounds)
            yield ContentChunk(CANCEL_MARKER)
        except StreamError as exc:
            # The reader already yielded the matching ErrorChunk.
            logger.warning("Stream reported an error: %s", exc.message)
        except UpstreamAPIError as exc:
            logger.warning("Completion request failed: %s", exc.message)
            yield ErrorChunk(
                message=exc.message, name=exc.name, status=exc.status, critical=True
            )
        except httpx.HTTPError as exc:
            logger.warning("Transport failure: %s", exc)
            yield ErrorChunk(
                message=str(exc) or type(exc).__name__,
                name=type(exc).__name__,
                raw=repr(exc),
                critical=True,
            )
        except Exception as exc:
            logger.exception("Unexpected failure during turn")
            yield ErrorChunk(
                message=str(exc) or "No detailed information",
                name=type(exc).__name__,
                raw=repr(exc),
                critical=True,
            )
        finally:
            self.state = LoopState.DONE

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    def build_messages(self, request: TurnRequest) -> list[dict[str, Any]]:
        query = with_date_context(request.query) if request.date_context else request.query
        messages = [format_message_for_api(m) for m in request.history]
        messages.append(
            {"role": "user", "content": build_user_content(query, request.attachments)}
        )
        if request.custom_instructions:
            messages.insert(0, {"role": "system", "content": request.custom_instructions})
        return messages

    @staticmethod
    def _tool_names(request: TurnRequest, model: ModelInfo | None) -> list[str]:
        names = list(request.tool_names)
        if model is not None:
            names.extend(model.extra_functions)
        return names

    def _assign_missing_ids(self, round_calls: PartsBuilder) -> list[ToolCallDeltaChunk]:
        """Give id-less calls ``call_{round}_{index}`` and return the id deltas."""
        deltas = []
        for call in round_calls.to_tool_call_list():
            if not call.id:
                call.id = f"call_{self.tool_rounds}_{call.index}"
                deltas.append(
                    ToolCallDeltaChunk(index=call.index, id=call.id, tool_kind=call.kind)
                )
        return deltas

    def _transition(self, state: LoopState) -> None:
        logger.debug("Tool loop %s -> %s", self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute_tool_calls(
        self, calls: list[ToolCall], history: list[Any]
    ) -> AsyncIterator[tuple[int, ToolResult]]:
        """Yield ``(position, result)`` pairs in completion order."""
        if not self.parallel_tools or len(calls) == 1:
            for position, call in enumerate(calls):
                yield position, await self._execute_tool_call(call, history)
            return

        async def run(position: int, call: ToolCall) -> tuple[int, ToolResult]:
            return position, await self._execute_tool_call(call, history)

        tasks = [asyncio.ensure_future(run(i, c)) for i, c in enumerate(calls)]
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _execute_tool_call(self, call: ToolCall, history: list[Any]) -> ToolResult:
        """
        Execute a single tool call.  Never raises.

        Steps:
        1. Parse arguments (malformed JSON falls back to ``{}``)
        2. Registry lookup
        3. Validate arguments
        4. Execute with timeout
        """
        name = call.name
        try:
            arguments = json.loads(call.arguments_text or "{}")
        except json.JSONDecodeError:
            logger.warning("Malformed arguments for tool %s: %r", name, call.arguments_text[:200])
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}

        tool = self.registry.get(name)
        if tool is None:
            logger.warning("Tool not found: %s", name)
            return _error_result(call, f"Unknown tool '{name}'", ErrorCode.UNKNOWN_TOOL)

        problem = validate_arguments(tool, arguments)
        if problem is not None:
            return _error_result(
                call, f"Invalid arguments for '{name}': {problem}", ErrorCode.VALIDATION_ERROR
            )

        try:
            value = await asyncio.wait_for(
                tool.execute(arguments, history), timeout=self.tool_timeout
            )
        except asyncio.TimeoutError:
            return _error_result(
                call, f"Tool timed out after {self.tool_timeout}s", ErrorCode.TIMEOUT
            )
        except Exception as exc:
            logger.exception("Error executing tool %r", name)
            return _error_result(
                call, f"Tool execution failed: {exc}", ErrorCode.TOOL_EXCEPTION
            )

        return ToolResult(
            tool_call_id=call.id,
            name=name,
            content=json.dumps(value, default=str),
        )


def _error_result(call: ToolCall, message: str, code: str) -> ToolResult:
    return ToolResult(
        tool_call_id=call.id,
        name=call.name,
        content=json.dumps({"error": message}),
        success=False,
        error_code=code,
    )
