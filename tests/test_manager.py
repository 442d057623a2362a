"""Tests for the conversation manager."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from linchat.config import LinchatConfig
from linchat.conversation.manager import (
    DEFAULT_TITLE,
    ConversationManager,
    derive_title,
    generate_title,
)
from linchat.conversation.messages import AssistantMessage, UserMessage
from linchat.conversation.store import ConversationStore
from linchat.llm.catalog import ModelCatalog, ModelInfo
from linchat.llm.errors import APIStatusError, StreamError
from linchat.llm.types import (
    AbortSignal,
    AnnotationsChunk,
    ContentChunk,
    ContentPart,
    ErrorChunk,
    FinishChunk,
    ImageChunk,
    ImagePart,
    ReasoningChunk,
    ReasoningPart,
    ToolCallDeltaChunk,
    ToolGroupPart,
    UsageChunk,
)
from linchat.orchestrator.core import CANCEL_MARKER, Orchestrator
from linchat.tools.registry import ToolRegistry
from tests.mock_providers import ScriptedClient, text_round, tool_round
from tests.mock_tools import EchoTool

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class StepClock:
    """Advances 100 ms on every read."""

    def __init__(self) -> None:
        self.now = T0

    def __call__(self) -> datetime:
        self.now += timedelta(milliseconds=100)
        return self.now


@pytest.fixture
def catalog():
    return ModelCatalog(
        [
            ModelInfo(id="mock-model", reasoning=True,
                      extra_parameters={"reasoning_effort": ["none", "low", "high"]}),
            ModelInfo(id="other"),
        ]
    )


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(EchoTool())
    return reg


@pytest.fixture
def config():
    cfg = LinchatConfig()
    cfg.llm.model = "mock-model"
    cfg.tools.enabled = ["echo"]
    cfg.chat.date_context = False
    return cfg


@pytest.fixture
async def store(tmp_path):
    s = ConversationStore(str(tmp_path / "history.db"))
    await s.init()
    yield s
    await s.close()


def _manager(rounds, registry, catalog, config, store=None, **orch_kwargs):
    client = ScriptedClient(rounds)
    orch = Orchestrator(client, registry, catalog, **orch_kwargs)
    return ConversationManager(orch, store, config, clock=StepClock()), client


class TestSendMessage:
    async def test_plain_answer(self, registry, catalog, config):
        manager, client = _manager(
            [[ContentChunk("Hello"), ContentChunk(" there"),
              UsageChunk(prompt_tokens=5, completion_tokens=2, total_tokens=7),
              FinishChunk("stop")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("Hi\nsecond line")

        assert msg.complete
        assert msg.content == "Hello there"
        assert msg.parts == [ContentPart("Hello there")]
        assert (msg.prompt_tokens, msg.token_count, msg.total_tokens) == (5, 2, 7)
        assert msg.first_token_time > msg.api_call_time
        assert msg.completion_time > msg.first_token_time
        assert msg.reasoning_duration_ms is None
        assert manager.title == "Hi"
        assert [m.role for m in manager.messages] == ["user", "assistant"]

    async def test_request_parameters(self, registry, catalog, config):
        manager, client = _manager([text_round("ok")], registry, catalog, config)
        await manager.send_message("q")
        body = client.bodies[0]
        assert body["model"] == "mock-model"
        assert body["temperature"] == 1.0
        assert body["top_p"] == 0.95
        assert "seed" not in body
        assert body["reasoning"] == {"effort": "low"}

    async def test_saved_effort_used(self, registry, catalog, config):
        manager, client = _manager([text_round("ok")], registry, catalog, config)
        manager.select_model("mock-model", reasoning_effort="high")
        await manager.send_message("q")
        assert client.bodies[0]["reasoning"] == {"effort": "high"}

    async def test_reasoning_then_content(self, registry, catalog, config):
        manager, _ = _manager(
            [[ReasoningChunk(" "), ReasoningChunk("Let me think"), ContentChunk("42"),
              FinishChunk("stop")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("q")
        assert msg.reasoning == "Let me think"
        assert msg.parts == [ReasoningPart("Let me think"), ContentPart("42")]
        # Started on the second read of the first reasoning chunk, ended on the
        # first content chunk: one clock step apart.
        assert msg.reasoning_duration_ms == 100

    async def test_whitespace_only_reasoning_cleared(self, registry, catalog, config):
        manager, _ = _manager(
            [[ReasoningChunk("   "), ContentChunk("x"), FinishChunk("stop")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("q")
        assert msg.reasoning == ""

    async def test_only_bare_none_reasoning_dropped(self, registry, catalog, config):
        manager, _ = _manager(
            [[ReasoningChunk("None"), ReasoningChunk("x is"), ReasoningChunk(" None\n"),
              ContentChunk("y"), FinishChunk("stop")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("q")
        assert msg.reasoning == "x is None\n"
        assert msg.parts[0] == ReasoningPart("x is None\n")

    async def test_tool_turn_builds_one_message(self, registry, catalog, config):
        manager, client = _manager(
            [
                [ContentChunk("Checking. ")] + tool_round(("c1", "echo", {"message": "hi"})),
                text_round("It said hi."),
            ],
            registry, catalog, config,
        )
        msg = await manager.send_message("echo hi")

        assert [type(p) for p in msg.parts] == [ContentPart, ToolGroupPart, ContentPart]
        (tool,) = msg.tool_calls
        assert tool.id == "c1"
        assert tool.has_result
        assert tool.result == '{"echo": "hi"}'
        assert msg.content == "Checking. It said hi."
        assert client.request_count == 2

    async def test_tool_call_without_id_gets_result(self, registry, catalog, config):
        manager, client = _manager(
            [
                [ToolCallDeltaChunk(index=0, name="echo", arguments='{"message": "x"}'),
                 FinishChunk("tool_calls")],
                text_round("ok"),
            ],
            registry, catalog, config,
        )
        msg = await manager.send_message("q")

        (tool,) = msg.tool_calls
        assert tool.id == "call_0_0"
        assert tool.has_result
        assert tool.result == '{"echo": "x"}'
        assistant = client.bodies[1]["messages"][-2]
        assert assistant["tool_calls"][0]["id"] == "call_0_0"

    async def test_max_iterations_two_rounds_then_complete(self, registry, catalog, config):
        manager, client = _manager(
            [tool_round(("c", "echo", {"message": "loop"}))],
            registry, catalog, config, max_iterations=2,
        )
        msg = await manager.send_message("go")
        assert msg.complete
        assert client.request_count == 3
        # Equal ids across rounds stay distinct tools.
        assert len(msg.tool_calls) == 3
        assert sum(t.has_result for t in msg.tool_calls) == 2

    async def test_image_only_gets_leading_content_part(self, registry, catalog, config):
        manager, _ = _manager(
            [[ImageChunk(images=[{"url": "http://img"}], content="Here is your cat"),
              FinishChunk("stop")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("draw a cat")
        assert isinstance(msg.parts[0], ContentPart)
        assert msg.parts[0].text == "Here is your cat"
        assert isinstance(msg.parts[1], ImagePart)

    async def test_annotations_recorded(self, registry, catalog, config):
        manager, _ = _manager(
            [[ContentChunk("x"), AnnotationsChunk([{"type": "url_citation"}]), FinishChunk("stop")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("q")
        assert msg.annotations == [{"type": "url_citation"}]

    async def test_on_update_receives_snapshots(self, registry, catalog, config):
        manager, _ = _manager(
            [[ContentChunk("a"), ContentChunk("b"), FinishChunk("stop")]],
            registry, catalog, config,
        )
        snapshots = []
        await manager.send_message("q", on_update=lambda msg, parts: snapshots.append(parts))
        assert [s[0].text for s in snapshots[:2]] == ["a", "ab"]
        assert snapshots[0] is not snapshots[1]

    async def test_history_excludes_current_turn(self, registry, catalog, config):
        manager, client = _manager([text_round("one"), text_round("two")], registry, catalog, config)
        await manager.send_message("first")
        await manager.send_message("second")
        messages = client.bodies[1]["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"] == "one"
        assert messages[2]["content"] == "second"


class TestTerminalOutcomes:
    async def test_cancel_mid_stream(self, registry, catalog, config):
        signal = AbortSignal()
        manager, client = _manager(
            [[ContentChunk("partial"), ToolCallDeltaChunk(index=0, id="c", name="echo"),
              FinishChunk("tool_calls")], text_round("never")],
            registry, catalog, config,
        )

        def on_update(msg, parts):
            if msg.content == "partial":
                signal.abort()

        msg = await manager.send_message("q", signal=signal, on_update=on_update)
        assert msg.complete
        assert msg.content.endswith(CANCEL_MARKER)
        assert client.request_count == 1

    async def test_fatal_error_recorded(self, registry, catalog, config):
        manager, _ = _manager([APIStatusError(502, "bad gateway")], registry, catalog, config)
        msg = await manager.send_message("q")
        assert msg.complete
        assert msg.error
        assert msg.error_details.status == 502
        assert msg.error_details.name == "APIStatusError"
        assert "[CRITICAL ERROR: API request failed with status 502: bad gateway]" in msg.content
        assert msg.content.endswith("HTTP 502")

    async def test_in_stream_error(self, registry, catalog, config):
        error = ErrorChunk(message="context too long", name="InvalidRequest")
        manager, _ = _manager(
            [[ContentChunk("Par"), error, StreamError("context too long")]],
            registry, catalog, config,
        )
        msg = await manager.send_message("q")
        assert msg.error
        assert msg.error_details.message == "context too long"
        assert msg.parts == [ContentPart("Par\n\n[ERROR: context too long]")]

    async def test_finalized_even_when_consumer_raises(self, registry, catalog, config):
        manager, _ = _manager([text_round("x")], registry, catalog, config)

        def on_update(msg, parts):
            raise RuntimeError("renderer crashed")

        with pytest.raises(RuntimeError):
            await manager.send_message("q", on_update=on_update)
        assistant = manager.messages[-1]
        assert isinstance(assistant, AssistantMessage)
        assert assistant.complete
        assert assistant.completion_time is not None


class TestPersistence:
    async def test_turn_saved_and_reloaded(self, registry, catalog, config, store):
        manager, _ = _manager(
            [tool_round(("c1", "echo", {"message": "hi"})), text_round("done")],
            registry, catalog, config, store,
        )
        await manager.send_message("Say hi please")
        cid = manager.conversation_id
        assert cid is not None

        reloaded, _ = _manager([text_round("x")], registry, catalog, config, store)
        assert await reloaded.load(cid)
        assert reloaded.title == "Say hi please"
        user, assistant = reloaded.messages
        assert isinstance(user, UserMessage)
        assert assistant.parts == manager.messages[1].parts
        assert assistant.tool_calls[0].result == '{"echo": "hi"}'

    async def test_incognito_not_saved(self, registry, catalog, config, store):
        config.chat.incognito = True
        manager, _ = _manager([text_round("x")], registry, catalog, config, store)
        await manager.send_message("secret")
        assert manager.conversation_id is None
        assert await store.list_conversations() == []

    async def test_delete_current_resets(self, registry, catalog, config, store):
        manager, _ = _manager([text_round("x")], registry, catalog, config, store)
        await manager.send_message("q")
        assert await manager.delete(manager.conversation_id)
        assert manager.messages == []
        assert manager.title == DEFAULT_TITLE

    async def test_load_unknown(self, registry, catalog, config, store):
        manager, _ = _manager([text_round("x")], registry, catalog, config, store)
        assert await manager.load("missing") is False


class TestTitles:
    def test_derive_title_first_non_empty_line(self):
        msgs = [UserMessage("\n  \n  A fairly long first line that keeps on going and going\nmore")]
        assert derive_title(msgs) == "A fairly long first line that keeps on g"

    def test_derive_title_fallback(self):
        assert derive_title([]) == DEFAULT_TITLE
        assert derive_title([AssistantMessage(content="hi")]) == DEFAULT_TITLE

    async def test_generate_title(self):
        client = ScriptedClient([])
        title = await generate_title(client, "m", [UserMessage("what is the tallest mountain")])
        assert title == "Scripted title"
        assert client.bodies[0]["messages"][1]["content"] == "what is the tallest mountain"

    async def test_generate_title_falls_back_on_error(self):
        class Failing:
            async def complete(self, body):
                raise APIStatusError(500, "down")

        title = await generate_title(Failing(), "m", [UserMessage("fallback line")])
        assert title == "fallback line"

    async def test_retitle_renames_stored_conversation(self, registry, catalog, config, store):
        manager, client = _manager([text_round("x")], registry, catalog, config, store)
        await manager.send_message("q")
        await manager.retitle(client)
        conv = await store.get_conversation(manager.conversation_id)
        assert conv["title"] == "Scripted title"
