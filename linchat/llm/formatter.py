"""
Request formatting -- turns conversation history into the wire format.

Prior assistant turns are re-serialized from their recorded parts:

  - reasoning becomes a ``<thinking>`` block so a later reader can tell it
    apart from the answer,
  - content becomes plain text, generated images become ``image_url`` parts,
  - tool groups become a one-line-per-tool summary; the machine-readable
    record travels in ``tool_calls``.

All-text results collapse to a single string.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any

from linchat.llm.catalog import ModelInfo
from linchat.llm.types import (
    ContentPart,
    ImagePart,
    ReasoningPart,
    ToolGroupPart,
)

logger = logging.getLogger(__name__)

REASONING_OPEN = "<thinking>"
REASONING_CLOSE = "</thinking>"

FILE_PARSER_PLUGIN: dict[str, Any] = {
    "id": "file-parser",
    "params": {"ocr_type": "mistral-ocr"},
}

_REASONING_RE = re.compile(
    re.escape(REASONING_OPEN) + r"\n?(.*?)\n?" + re.escape(REASONING_CLOSE),
    re.DOTALL,
)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def format_message_for_api(msg: Any) -> dict[str, Any]:
    """
    Format one history entry for the completion endpoint.

    *msg* is a ``UserMessage``, an ``AssistantMessage`` or a plain dict
    (``tool`` / ``system`` roles).
    """
    if isinstance(msg, dict):
        return _format_plain(msg)

    base: dict[str, Any] = {"role": msg.role}
    annotations = getattr(msg, "annotations", None)
    if annotations:
        base["annotations"] = annotations

    if msg.role == "user":
        base["content"] = build_user_content(msg.content or "", msg.attachments)
        return base

    if msg.role == "assistant":
        base["content"] = _assistant_content(msg)
        if msg.tool_calls:
            base["tool_calls"] = [tc.to_wire() for tc in msg.tool_calls]
        return base

    base["content"] = msg.content or ""
    return base


def build_user_content(text: str, attachments: list[Any] | None) -> str | list[dict]:
    """A plain string, or a text part followed by one part per attachment."""
    if not attachments:
        return text

    parts: list[dict[str, Any]] = [{"type": "text", "text": text}]
    for attachment in attachments:
        if attachment.type == "image":
            parts.append({"type": "image_url", "image_url": {"url": attachment.data_url}})
        elif attachment.type == "pdf":
            parts.append(
                {
                    "type": "file",
                    "file": {
                        "filename": attachment.filename,
                        "file_data": strip_data_url(attachment.data_url),
                    },
                }
            )
        else:
            logger.warning("Skipping unsupported attachment type %r", attachment.type)
    return parts


def strip_data_url(data_url: str) -> str:
    """Drop the ``data:<mime>;base64,`` prefix."""
    _, sep, payload = data_url.partition(",")
    return payload if sep else data_url


def wrap_reasoning(text: str) -> str:
    return f"{REASONING_OPEN}\n{text}\n{REASONING_CLOSE}"


def split_reasoning(text: str) -> tuple[list[str], str]:
    """
    Separate ``<thinking>`` blocks from answer text.

    Returns the reasoning blocks in order and the remaining text with the
    blocks removed.
    """
    blocks = [m.group(1) for m in _REASONING_RE.finditer(text)]
    remainder = _REASONING_RE.sub("", text).strip()
    return blocks, remainder


def with_date_context(query: str, today: date | None = None) -> str:
    """Prefix the user's query with the current date."""
    today = today or date.today()
    return (
        "<context>\n"
        "  <!-- CURRENT DATE ADDED AUTOMATICALLY; ONLY USE THE CURRENT DATE "
        "WHEN REQUIRED OR EXPLICITLY TOLD TO USE. -->\n"
        f"  Current Date: {today.isoformat()}\n"
        "</context>\n\n"
        f"{query}"
    )


def _format_plain(msg: dict[str, Any]) -> dict[str, Any]:
    role = msg.get("role", "user")
    base: dict[str, Any] = {"role": role, "content": msg.get("content") or ""}
    if role == "tool":
        base["tool_call_id"] = msg.get("tool_call_id")
        base["name"] = msg.get("name")
    if msg.get("tool_calls"):
        base["tool_calls"] = msg["tool_calls"]
    return base


def _assistant_content(msg: Any) -> str | list[dict]:
    if not msg.parts:
        content = msg.content or ""
        if msg.reasoning and msg.reasoning.strip():
            content = f"{wrap_reasoning(msg.reasoning)}\n\n{content}"
        return content

    content_parts: list[dict[str, Any]] = []
    for part in msg.parts:
        if isinstance(part, ReasoningPart):
            if part.text.strip():
                content_parts.append({"type": "text", "text": wrap_reasoning(part.text)})
        elif isinstance(part, ContentPart):
            if part.text.strip():
                content_parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            for img in part.images:
                content_parts.append({"type": "image_url", "image_url": {"url": img.url}})
        elif isinstance(part, ToolGroupPart):
            if part.tools:
                summary = "\n".join(
                    f"[Tool: {t.name or 'unknown'}{' (completed)' if t.has_result else ''}]"
                    for t in part.tools
                )
                content_parts.append({"type": "text", "text": summary})

    if not content_parts:
        return msg.content or ""
    if any(p["type"] != "text" for p in content_parts):
        return content_parts
    return "\n\n".join(p["text"] for p in content_parts)


# ---------------------------------------------------------------------------
# Request body
# ---------------------------------------------------------------------------


def resolve_reasoning(
    model: ModelInfo | None,
    selected_model_id: str,
    effort: str | None,
) -> tuple[str, dict[str, Any] | None]:
    """
    Return ``(target_model_id, reasoning_param)`` for one request.

    A string ``reasoning`` capability is a routing rule: the request goes to
    that model id whenever an effort other than ``"none"`` is requested.
    """
    if model is None:
        return selected_model_id, None

    if isinstance(model.reasoning, str):
        if effort and effort != "none":
            return model.reasoning, None
        return selected_model_id, None

    if model.has_toggleable_reasoning:
        return selected_model_id, {"enabled": effort != "none"}

    if model.reasoning is True and effort:
        return selected_model_id, {"effort": effort}

    return selected_model_id, None


def build_request_body(
    *,
    model_id: str,
    model: ModelInfo | None,
    messages: list[dict[str, Any]],
    parameters: dict[str, Any] | None = None,
    tools: list[dict] | None = None,
    has_pdf: bool = False,
    stream: bool = True,
) -> dict[str, Any]:
    """Assemble the JSON body of one ``/chat/completions`` request."""
    parameters = parameters or {}
    effort = (parameters.get("reasoning") or {}).get("effort")
    target_model, reasoning = resolve_reasoning(model, model_id, effort)

    body: dict[str, Any] = {
        "model": target_model,
        "messages": messages,
        "stream": stream,
    }
    if has_pdf:
        body["plugins"] = [FILE_PARSER_PLUGIN]
    if tools:
        body["tools"] = tools
        body["tool_choice"] = "auto"
    for key in ("temperature", "top_p", "seed"):
        if parameters.get(key) is not None:
            body[key] = parameters[key]
    if reasoning is not None:
        body["reasoning"] = reasoning

    logger.info(
        "REQUEST: model=%s selected=%s tools=%d messages=%d",
        target_model,
        model_id,
        len(tools) if tools else 0,
        len(messages),
    )
    return body
