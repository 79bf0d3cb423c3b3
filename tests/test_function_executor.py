from pathlib import Path

import pytest

from mouse_bot.config import SandboxConfig
from mouse_bot.core.router import parse_command
from mouse_bot.errors import HandlerLoadError
from mouse_bot.functions.executor import FunctionExecutor
from mouse_bot.functions.sandbox import ScriptSandbox
from mouse_bot.storage.models import FunctionFlow, FunctionMapping, RequestRecord

EVENT = {"op": 0, "t": "GROUP_AT_MESSAGE_CREATE", "d": {"id": "msg1", "content": " /ping"}}

PING_SCRIPT = (
    "def run(input, command, args, event, config):\n"
    "    if command == '/ping':\n"
    "        return 'pong'\n"
    "    return ''\n"
)


@pytest.fixture
def functions_dir(tmp_path):
    path = tmp_path / "functions"
    path.mkdir()
    return path


@pytest.fixture
def executor(functions_dir, request_repo):
    return FunctionExecutor(functions_dir, ScriptSandbox(SandboxConfig()), request_repo)


def _mapped_flow(*mappings: tuple[str, str], preset: str = "") -> FunctionFlow:
    return FunctionFlow(
        id="f1",
        bot_id="bot1",
        preset=preset,
        functions=tuple(FunctionMapping(command=c, handler=h) for c, h in mappings),
    )


async def _run(executor, flow, text):
    return await executor.run(flow, text, EVENT, parse_command(text))


class TestInlineScript:
    @pytest.mark.asyncio
    async def test_custom_script_replies(self, executor):
        flow = FunctionFlow(id="f1", bot_id="bot1", preset="custom", script=PING_SCRIPT)

        assert await _run(executor, flow, "/ping") == "pong"
        assert await _run(executor, flow, "/other") == ""

    @pytest.mark.asyncio
    async def test_failing_script_yields_nothing(self, executor):
        flow = FunctionFlow(
            id="f1",
            bot_id="bot1",
            preset="custom",
            script="def run(input, command, args, event, config):\n    return 1 / 0\n",
        )

        assert await _run(executor, flow, "/ping") == ""

    @pytest.mark.asyncio
    async def test_empty_script_yields_nothing(self, executor):
        flow = FunctionFlow(id="f1", bot_id="bot1", preset="custom", script="  ")

        assert await _run(executor, flow, "/ping") == ""


class TestFileHandlers:
    @pytest.mark.asyncio
    async def test_mapped_command_runs_handler(self, executor, functions_dir):
        (functions_dir / "ping.py").write_text("def run(ctx):\n    return 'pong'\n", encoding="utf-8")

        assert await _run(executor, _mapped_flow(("/ping", "ping")), "/ping") == "pong"

    @pytest.mark.asyncio
    async def test_handler_receives_context(self, executor, functions_dir):
        (functions_dir / "echo.py").write_text(
            "def run(ctx):\n"
            "    return f\"{ctx.command}|{ctx.args}|{ctx.config.id}|{ctx.event['d']['id']}|{ctx.message}\"\n",
            encoding="utf-8",
        )

        result = await _run(executor, _mapped_flow(("/echo", "echo")), "/echo a  b")

        assert result == "/echo|a b|f1|msg1|/echo a  b"

    @pytest.mark.asyncio
    async def test_async_handler_and_structured_result(self, executor, functions_dir):
        (functions_dir / "stats.py").write_text(
            "async def main(ctx):\n    return {'count': 2, 'name': '小老鼠'}\n", encoding="utf-8"
        )

        result = await _run(executor, _mapped_flow(("/stats", "stats.py")), "/stats")

        assert result == '{"count": 2, "name": "小老鼠"}'

    @pytest.mark.asyncio
    async def test_handler_returning_none_is_silent(self, executor, functions_dir):
        (functions_dir / "quiet.py").write_text("def run(ctx):\n    return None\n", encoding="utf-8")

        assert await _run(executor, _mapped_flow(("/quiet", "quiet")), "/quiet") == ""

    @pytest.mark.asyncio
    async def test_unmapped_command_is_ignored(self, executor, functions_dir):
        (functions_dir / "ping.py").write_text("def run(ctx):\n    return 'pong'\n", encoding="utf-8")

        assert await _run(executor, _mapped_flow(("/ping", "ping")), "/pong") == ""

    @pytest.mark.asyncio
    async def test_preset_handler_without_mappings(self, executor, functions_dir):
        (functions_dir / "template.py").write_text("def run(ctx):\n    return 'args=' + ctx.args\n", encoding="utf-8")

        assert await _run(executor, _mapped_flow(preset="template"), "/anything x") == "args=x"

    @pytest.mark.asyncio
    async def test_missing_handler_file_yields_nothing(self, executor):
        assert await _run(executor, _mapped_flow(("/ping", "nope")), "/ping") == ""

    @pytest.mark.asyncio
    async def test_raising_handler_yields_nothing(self, executor, functions_dir):
        (functions_dir / "bad.py").write_text("def run(ctx):\n    raise KeyError('x')\n", encoding="utf-8")

        assert await _run(executor, _mapped_flow(("/bad", "bad")), "/bad") == ""

    @pytest.mark.asyncio
    async def test_handler_can_clear_flow_history(self, executor, functions_dir, request_repo):
        (functions_dir / "clear.py").write_text(
            "async def run(ctx):\n"
            "    deleted = await ctx.requests.delete_for_flow(ctx.args or ctx.config.id)\n"
            "    return f'cleared {deleted}'\n",
            encoding="utf-8",
        )
        await request_repo.create_pending(RequestRecord(flow_id="chat", bot_id="bot1", model_id="m1", request={}))

        assert await _run(executor, _mapped_flow(("/clear", "clear")), "/clear chat") == "cleared 1"


class TestLoadHandler:
    def test_rejects_paths_outside_directory(self, executor, functions_dir):
        (functions_dir.parent / "evil.py").write_text("def run(ctx):\n    return 'x'\n", encoding="utf-8")

        with pytest.raises(HandlerLoadError, match="outside"):
            executor.load_handler("../evil")

    def test_requires_entry_point(self, executor, functions_dir):
        (functions_dir / "empty.py").write_text("VALUE = 1\n", encoding="utf-8")

        with pytest.raises(HandlerLoadError, match="defines no"):
            executor.load_handler("empty")

    def test_import_error_is_load_error(self, executor, functions_dir):
        (functions_dir / "broken.py").write_text("def run(ctx)\n", encoding="utf-8")

        with pytest.raises(HandlerLoadError, match="SyntaxError"):
            executor.load_handler("broken")

    def test_reloads_edited_file(self, executor, functions_dir):
        path = functions_dir / "greet.py"
        path.write_text("def run(ctx):\n    return 'v1'\n", encoding="utf-8")
        assert executor.load_handler("greet")(None) == "v1"

        path.write_text("def run(ctx):\n    return 'version two'\n", encoding="utf-8")
        assert executor.load_handler("greet")(None) == "version two"


SHIPPED_FUNCTIONS = Path(__file__).resolve().parents[1] / "data" / "functions"


class TestShippedHandlers:
    @pytest.fixture
    def shipped(self, request_repo):
        return FunctionExecutor(SHIPPED_FUNCTIONS, ScriptSandbox(SandboxConfig()), request_repo)

    @pytest.mark.asyncio
    async def test_template_echoes_args(self, shipped):
        flow = _mapped_flow(("/echo", "template"))

        assert await _run(shipped, flow, "/echo hello  mouse") == "You said: hello mouse"
        assert "Please provide arguments" in await _run(shipped, flow, "/echo")

    @pytest.mark.asyncio
    async def test_clear_memory_defaults_to_own_flow(self, shipped, request_repo):
        for flow_id in ("f1", "f1", "chat"):
            await request_repo.create_pending(RequestRecord(flow_id=flow_id, bot_id="bot1", model_id="m1", request={}))

        reply = await _run(shipped, _mapped_flow(("/clear", "clear_memory")), "/clear")

        assert reply == "Conversation history cleared (2 records)"
        assert await request_repo.delete_for_flow("chat") == 1

    @pytest.mark.asyncio
    async def test_ping(self, shipped):
        assert await _run(shipped, _mapped_flow(("/ping", "ping")), "/ping") == "pong"
