"""Tests for ToolRegistry and the built-in tools."""

from unittest.mock import MagicMock, patch

import pytest

from linchat.tools.base import FunctionTool
from linchat.tools.builtin import BUILTIN_TOOLS, CurrentTimeTool, ListAttachmentsTool
from linchat.tools.registry import ToolRegistry
from linchat.conversation.messages import Attachment, UserMessage
from tests.mock_tools import EchoTool, FailingTool, SlowTool


class TestToolRegistry:
    def test_register_and_get(self):
        reg = ToolRegistry()
        tool = EchoTool()
        reg.register(tool)
        assert reg.get("echo") is tool

    def test_get_returns_none_for_unknown(self):
        assert ToolRegistry().get("nonexistent") is None

    def test_require_raises_keyerror_for_unknown(self):
        with pytest.raises(KeyError, match="nonexistent"):
            ToolRegistry().require("nonexistent")

    def test_duplicate_registration_raises_valueerror(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        with pytest.raises(ValueError, match="already registered"):
            reg.register(EchoTool())

    def test_duplicate_registration_with_overwrite(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        replacement = EchoTool()
        reg.register(replacement, overwrite=True)
        assert reg.get("echo") is replacement

    def test_unregister(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        reg.unregister("echo")
        reg.unregister("echo")
        assert reg.names() == []

    def test_list_sorted_by_name(self):
        reg = ToolRegistry()
        reg.register(SlowTool("zeta"))
        reg.register(EchoTool())
        reg.register(FailingTool())
        assert reg.names() == ["echo", "explode", "zeta"]

    def test_schemas_by_names_keeps_order_and_skips_unknown(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        reg.register(FailingTool())
        schemas = reg.get_schemas_by_names(["explode", "missing", "echo", "explode"])
        assert [s["function"]["name"] for s in schemas] == ["explode", "echo"]

    def test_openai_schema_shape(self):
        reg = ToolRegistry()
        reg.register(EchoTool())
        (schema,) = reg.to_openai_schema()
        assert schema["type"] == "function"
        assert schema["function"]["parameters"]["additionalProperties"] is False
        assert schema["function"]["parameters"]["required"] == ["message"]


class TestFunctionTool:
    async def test_sync_executor(self):
        reg = ToolRegistry()
        tool = reg.register_function(
            "add",
            lambda args, history: args["a"] + args["b"],
            description="Add numbers",
            parameters={"type": "object", "properties": {"a": {"type": "number"}, "b": {"type": "number"}}},
        )
        assert isinstance(tool, FunctionTool)
        assert await tool.execute({"a": 2, "b": 3}, []) == 5

    async def test_async_executor_and_docstring_description(self):
        async def lookup(args, history):
            """Look something up."""
            return {"found": args.get("q"), "seen": len(history)}

        tool = FunctionTool("lookup", lookup)
        assert tool.description == "Look something up."
        assert await tool.execute({"q": "x"}, [1, 2]) == {"found": "x", "seen": 2}


class TestPlugins:
    def test_disabled_loads_nothing(self):
        assert ToolRegistry().load_plugins(enabled=False) == 0

    def test_loads_allowed_entry_points(self):
        allowed = MagicMock()
        allowed.name = "echo"
        allowed.load.return_value = EchoTool
        blocked = MagicMock()
        blocked.name = "explode"
        blocked.load.return_value = FailingTool

        reg = ToolRegistry()
        with patch("linchat.tools.registry.entry_points", return_value=[allowed, blocked]) as ep:
            loaded = reg.load_plugins(enabled=True, allow_tools={"echo"})

        ep.assert_called_once_with(group="linchat.tools")
        assert loaded == 1
        assert reg.names() == ["echo"]
        blocked.load.assert_not_called()


class TestBuiltinTools:
    def test_all_builtins_instantiate(self):
        reg = ToolRegistry()
        for tool_cls in BUILTIN_TOOLS:
            reg.register(tool_cls())
        assert reg.names() == ["get_current_time", "list_conversation_files"]

    async def test_current_time_utc_default(self):
        result = await CurrentTimeTool().execute({}, [])
        assert result["timezone"] == "UTC"
        assert result["iso"].endswith("+00:00")

    async def test_current_time_unknown_zone(self):
        result = await CurrentTimeTool().execute({"timezone": "Mars/Olympus"}, [])
        assert result == {"error": "Unknown timezone 'Mars/Olympus'"}

    async def test_list_attachments(self):
        history = [
            UserMessage("see", attachments=[
                Attachment(type="pdf", filename="a.pdf", data_url="data:application/pdf;base64,x",
                           mime_type="application/pdf"),
            ]),
            {"role": "tool", "content": "{}"},
        ]
        result = await ListAttachmentsTool().execute({}, history)
        assert result == [{"filename": "a.pdf", "type": "pdf", "mime_type": "application/pdf"}]
