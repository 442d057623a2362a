"""
Conversation manager -- drives one turn and owns the message list.

``send_message`` folds the orchestrator's chunk stream into a fresh
``AssistantMessage`` (parts, timings, legacy flattened text) and always
finalizes the message, whether the turn ended normally, was cancelled or
failed.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from linchat.config import LinchatConfig
from linchat.conversation.messages import (
    AssistantMessage,
    Attachment,
    Message,
    UserMessage,
)
from linchat.conversation.store import ConversationStore
from linchat.llm.catalog import model_parameters
from linchat.llm.client import CompletionClient
from linchat.llm.errors import UpstreamAPIError
from linchat.llm.parts_builder import REASONING_NONE_SENTINEL, PartsBuilder
from linchat.llm.timing import TimingTracker, utcnow
from linchat.llm.types import (
    AbortSignal,
    AnnotationsChunk,
    ContentChunk,
    ErrorChunk,
    ImageChunk,
    ParsedChunk,
    Part,
    ReasoningChunk,
    UsageChunk,
)
from linchat.orchestrator.core import Orchestrator, TurnRequest
from linchat.types import ErrorDetails

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 40

TITLE_PROMPT = (
    "Summarize the user's message as a conversation title of at most five "
    "words. Reply with the title only, without quotes or punctuation at the end."
)

UpdateCallback = Callable[[AssistantMessage, list[Part]], None]


def derive_title(messages: list[Message]) -> str:
    """First non-empty line of the first user message, clipped."""
    for msg in messages:
        if msg.role != "user":
            continue
        for line in (msg.content or "").splitlines():
            line = line.strip()
            if line:
                return line[:TITLE_MAX_CHARS]
    return DEFAULT_TITLE


async def generate_title(
    client: CompletionClient,
    model_id: str,
    messages: list[Message],
) -> str:
    """Ask the endpoint for a short title; fall back to ``derive_title``."""
    fallback = derive_title(messages)
    first_user = next((m for m in messages if m.role == "user" and m.content), None)
    if first_user is None:
        return fallback

    body = {
        "model": model_id,
        "messages": [
            {"role": "system", "content": TITLE_PROMPT},
            {"role": "user", "content": first_user.content},
        ],
    }
    try:
        data = await client.complete(body)
        title = data["choices"][0]["message"]["content"] or ""
    except (UpstreamAPIError, httpx.HTTPError) as e:
        logger.warning("Title generation failed: %s", e)
        return fallback
    except (KeyError, IndexError, TypeError):
        logger.warning("Title generation returned an unexpected payload")
        return fallback

    title = title.strip().strip("\"'").strip()
    return title[:TITLE_MAX_CHARS] if title else fallback


class ConversationManager:
    """
    One conversation: its messages, its persistence and its turns.

    Parameters
    ----------
    orchestrator : Orchestrator
        Runs the tool loop of each turn.
    store : ConversationStore, optional
        Persistence; ``None`` (or incognito) keeps everything in memory.
    config : LinchatConfig, optional
        Model, sampling parameters, enabled tools and chat options.
    clock : callable
        Source of UTC timestamps, injectable for tests.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: ConversationStore | None = None,
        config: LinchatConfig | None = None,
        *,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.config = config or LinchatConfig()
        self.clock = clock
        self.model_id = self.config.llm.model or orchestrator.catalog.default_model_id or ""
        self.incognito = self.config.chat.incognito
        self.messages: list[Message] = []
        self.conversation_id: str | None = None
        self.title = DEFAULT_TITLE
        self.reasoning_efforts: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def new_conversation(self) -> None:
        self.messages = []
        self.conversation_id = None
        self.title = DEFAULT_TITLE

    async def load(self, conversation_id: str) -> bool:
        if self.store is None:
            return False
        conv = await self.store.get_conversation(conversation_id)
        if conv is None:
            return False
        self.messages = conv["messages"]
        self.conversation_id = conv["id"]
        self.title = conv["title"]
        if conv.get("model"):
            self.model_id = conv["model"]
        return True

    async def delete(self, conversation_id: str) -> bool:
        if self.store is None:
            return False
        deleted = await self.store.delete_conversation(conversation_id)
        if deleted and conversation_id == self.conversation_id:
            self.new_conversation()
        return deleted

    def select_model(self, model_id: str, reasoning_effort: str | None = None) -> None:
        self.model_id = model_id
        if reasoning_effort:
            self.reasoning_efforts[model_id] = reasoning_effort

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        attachments: list[Attachment] | None = None,
        signal: AbortSignal | None = None,
        on_update: UpdateCallback | None = None,
    ) -> AssistantMessage:
        history = [m for m in self.messages if m.complete]
        user = UserMessage(content=text, attachments=list(attachments or []))
        assistant = AssistantMessage(model=self.model_id, api_call_time=self.clock())
        self.messages.extend([user, assistant])

        builder = PartsBuilder()
        timing = TimingTracker(assistant, clock=self.clock)
        request = self._turn_request(text, user.attachments, history)

        try:
            async for chunk in self.orchestrator.run(request, signal):
                self._apply(assistant, builder, timing, chunk)
                if on_update is not None:
                    on_update(assistant, builder.to_snapshot())
        finally:
            self._finalize(assistant, builder, timing)
            if self.title == DEFAULT_TITLE:
                self.title = derive_title(self.messages)
            await self._persist()

        return assistant

    def _turn_request(
        self, text: str, attachments: list[Attachment], history: list[Message]
    ) -> TurnRequest:
        cfg = self.config
        parameters = cfg.parameters.sampling()
        model = self.orchestrator.catalog.find(self.model_id)
        if model is not None:
            saved = self.reasoning_efforts.get(model.id) or cfg.parameters.reasoning_effort
            parameters = model_parameters(model, parameters, saved)
        elif cfg.parameters.reasoning_effort:
            parameters["reasoning"] = {"effort": cfg.parameters.reasoning_effort}

        return TurnRequest(
            query=text,
            model_id=self.model_id,
            history=history,
            attachments=attachments,
            parameters=parameters,
            tool_names=list(cfg.tools.enabled),
            custom_instructions=cfg.chat.custom_instructions,
            date_context=cfg.chat.date_context,
        )

    def _apply(
        self,
        msg: AssistantMessage,
        builder: PartsBuilder,
        timing: TimingTracker,
        chunk: ParsedChunk,
    ) -> None:
        timing.observe(chunk)
        builder.apply(chunk)

        if isinstance(chunk, ContentChunk):
            msg.content += chunk.text
        elif isinstance(chunk, ReasoningChunk):
            text = chunk.text
            if text and text != REASONING_NONE_SENTINEL:
                if msg.reasoning.strip() == "" and text.strip() != "":
                    msg.reasoning = text
                else:
                    msg.reasoning += text
        elif isinstance(chunk, UsageChunk):
            msg.token_count = chunk.completion_tokens or 0
            msg.prompt_tokens = chunk.prompt_tokens or 0
            msg.total_tokens = chunk.total_tokens or 0
        elif isinstance(chunk, AnnotationsChunk):
            msg.annotations = chunk.annotations
        elif isinstance(chunk, ImageChunk):
            if chunk.content and not msg.content:
                msg.content = chunk.content
        elif isinstance(chunk, ErrorChunk):
            msg.error = True
            msg.error_details = ErrorDetails(
                name=chunk.name, message=chunk.message, status=chunk.status, raw=chunk.raw
            )
            msg.content += chunk.display_text()

    def _finalize(
        self, msg: AssistantMessage, builder: PartsBuilder, timing: TimingTracker
    ) -> None:
        if not msg.reasoning.strip():
            msg.reasoning = ""
        builder.ensure_content_part_first(msg.content)
        msg.parts = builder.parts
        msg.tool_calls = builder.to_tool_call_list()
        msg.completion_time = self.clock()
        msg.reasoning_duration_ms = timing.finalize_reasoning_duration()
        msg.complete = True
        logger.info(
            "Turn finished: parts=%d tools=%d tokens=%d error=%s",
            len(msg.parts),
            len(msg.tool_calls),
            msg.token_count,
            msg.error,
        )

    async def _persist(self) -> None:
        if self.store is None or self.incognito:
            return
        if self.conversation_id is None:
            self.conversation_id = await self.store.create_conversation(
                self.title, model=self.model_id
            )
        await self.store.save_messages(
            self.conversation_id, self.messages, title=self.title, model=self.model_id
        )

    async def retitle(self, client: CompletionClient) -> str:
        """Replace the derived title with one generated by the endpoint."""
        self.title = await generate_title(client, self.model_id, self.messages)
        if self.store is not None and self.conversation_id and not self.incognito:
            await self.store.rename(self.conversation_id, self.title)
        return self.title
