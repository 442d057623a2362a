"""
Folds parsed chunks into the ordered parts of an assistant message.

Design goals:
  - Parts mirror meaningful transitions only: consecutive content (or
    reasoning, or images) merge into one part, consecutive tool groups merge
    when their tool kind matches.
  - Tool calls accumulate by ``index`` within the trailing tool group; names
    are overwritten when non-empty, argument fragments are appended.
  - Tool results attach by ``id`` across the whole part history.
  - ``to_snapshot()`` hands out fresh containers so a renderer can diff
    without ever touching the builder's own state.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from linchat.llm.types import (
    ContentChunk,
    ContentPart,
    ErrorChunk,
    FinishChunk,
    GeneratedImage,
    ImageChunk,
    ImagePart,
    ParsedChunk,
    Part,
    ReasoningChunk,
    ReasoningPart,
    ToolCall,
    ToolCallDeltaChunk,
    ToolGroupPart,
    ToolResultChunk,
)

logger = logging.getLogger(__name__)

# Some upstream APIs send this instead of omitting the reasoning field.
REASONING_NONE_SENTINEL = "None"


class PartsBuilder:
    """Incrementally builds the ``parts`` list of one assistant message."""

    def __init__(self, parts: list[Part] | None = None) -> None:
        self.parts: list[Part] = list(parts or [])
        self._round = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(self, chunk: ParsedChunk) -> None:
        """Fold a single chunk into the parts list, in arrival order."""
        if isinstance(chunk, ContentChunk):
            self.append_content(chunk.text)
        elif isinstance(chunk, ReasoningChunk):
            self.append_reasoning(chunk.text)
        elif isinstance(chunk, ToolCallDeltaChunk):
            self.add_or_update_tool(chunk)
        elif isinstance(chunk, ToolResultChunk):
            if not self.set_tool_result(chunk.id, chunk.result):
                logger.debug("No pending tool call for result id=%s", chunk.id)
        elif isinstance(chunk, ImageChunk):
            for image in chunk.images:
                self.process_image(image)
        elif isinstance(chunk, ErrorChunk):
            self.append_content(chunk.display_text())
        elif isinstance(chunk, FinishChunk):
            # The next request round numbers its tool calls from zero again.
            self._round += 1

    def append_content(self, text: str) -> ContentPart | None:
        if not text:
            return None
        part = self._last_or_new(ContentPart)
        part.text += text
        return part

    def append_reasoning(self, text: str) -> ReasoningPart | None:
        if not text or text == REASONING_NONE_SENTINEL:
            return None
        part = self._last_or_new(ReasoningPart)
        # Drop leading filler whitespace once real reasoning arrives.
        if part.text.strip() == "" and text.strip() != "":
            part.text = text
        else:
            part.text += text
        return part

    def add_or_update_tool(self, delta: ToolCallDeltaChunk) -> ToolCall:
        tool_kind = delta.tool_kind or "function"
        last = self.last_part()
        if isinstance(last, ToolGroupPart) and last.tool_kind == tool_kind:
            group = last
        else:
            group = ToolGroupPart(tool_kind=tool_kind)
            self.parts.append(group)

        for tool in group.tools:
            if tool.index == delta.index and tool.round == self._round:
                break
        else:
            tool = ToolCall(index=delta.index, kind=tool_kind, round=self._round)
            group.tools.append(tool)

        if delta.name:
            tool.name = delta.name
        if delta.arguments:
            tool.arguments_text += delta.arguments
        if delta.id and not tool.id:
            tool.id = delta.id
        if delta.tool_kind:
            tool.kind = delta.tool_kind
        return tool

    def set_tool_result(self, tool_id: str | None, result: Any) -> bool:
        """
        Attach *result* to the first pending tool with *tool_id*, wherever
        its group sits.

        Returns ``False`` when no tool without a result matches.
        """
        if tool_id is None:
            return False
        for part in self.parts:
            if not isinstance(part, ToolGroupPart):
                continue
            for tool in part.tools:
                if tool.id == tool_id and not tool.has_result:
                    tool.result = result
                    tool.has_result = True
                    return True
        return False

    def add_image(self, url: str, revised_prompt: str | None = None) -> ImagePart | None:
        if not url:
            return None
        part = self._last_or_new(ImagePart)
        part.images.append(GeneratedImage(url=url, revised_prompt=revised_prompt))
        return part

    def process_image(self, image: dict[str, Any]) -> ImagePart | None:
        normalized = GeneratedImage.from_payload(image)
        if normalized is None:
            logger.debug("Ignoring image payload without a URL: %s", list(image))
            return None
        return self.add_image(normalized.url, normalized.revised_prompt)

    def ensure_content_part_first(self, content: str) -> bool:
        """Insert *content* as the first part of an image-only response."""
        if self.has_image_part() and not self.has_content_part() and content:
            self.parts.insert(0, ContentPart(text=content))
            return True
        return False

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def last_part(self) -> Part | None:
        return self.parts[-1] if self.parts else None

    def has_parts(self) -> bool:
        return bool(self.parts)

    def has_content_part(self) -> bool:
        return any(isinstance(p, ContentPart) for p in self.parts)

    def has_image_part(self) -> bool:
        return any(isinstance(p, ImagePart) for p in self.parts)

    def to_tool_call_list(self) -> list[ToolCall]:
        """All tools flattened in part order, then (round, index) order."""
        tools: list[ToolCall] = []
        for part in self.parts:
            if isinstance(part, ToolGroupPart):
                tools.extend(sorted(part.tools, key=lambda t: (t.round, t.index)))
        return tools

    def to_snapshot(self) -> list[Part]:
        return copy.deepcopy(self.parts)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _last_or_new(self, part_cls: type) -> Any:
        last = self.last_part()
        if isinstance(last, part_cls):
            return last
        part = part_cls()
        self.parts.append(part)
        return part
