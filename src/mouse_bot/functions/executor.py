"""Function flows: command handlers from ``data/functions`` or inline scripts."""

from __future__ import annotations

import importlib.util
import inspect
import json
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

from mouse_bot.core.router import ParsedCommand
from mouse_bot.errors import HandlerExecutionError, HandlerLoadError
from mouse_bot.functions.sandbox import ScriptSandbox
from mouse_bot.log import get_logger
from mouse_bot.storage.models import FunctionFlow
from mouse_bot.storage.request_repo import RequestRepository

logger = get_logger(__name__)

ENTRY_POINTS = ("run", "main")


@dataclass(frozen=True, slots=True)
class FunctionContext:
    """What a file handler's ``run(ctx)`` receives."""

    message: str
    command: str
    args: str
    event: dict[str, Any]
    config: FunctionFlow
    requests: RequestRepository


def _to_text(result: Any) -> str:
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


class FunctionExecutor:
    """Runs one function flow. An empty string means "send nothing"."""

    def __init__(self, functions_dir: Path, sandbox: ScriptSandbox, requests: RequestRepository):
        self._functions_dir = functions_dir
        self._sandbox = sandbox
        self._requests = requests

    async def run(self, flow: FunctionFlow, message: str, event: dict[str, Any], parsed: ParsedCommand) -> str:
        try:
            if flow.uses_inline_script:
                return await self._run_script(flow, message, event, parsed)
            return await self._run_handler(flow, message, event, parsed)
        except (HandlerLoadError, HandlerExecutionError) as e:
            logger.warning(
                "function_flow_failed",
                flow_id=flow.id,
                bot_id=flow.bot_id,
                command=parsed.command,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ""

    async def _run_script(self, flow: FunctionFlow, message: str, event: dict[str, Any], parsed: ParsedCommand) -> str:
        if not flow.script.strip():
            return ""
        bindings = {
            "input": message,
            "command": parsed.command,
            "args": parsed.args,
            "event": event,
            "config": flow.to_dict(),
        }
        try:
            return await self._sandbox.run(flow.script, bindings)
        except HandlerExecutionError as e:
            e.flow_id = flow.id
            raise

    async def _run_handler(self, flow: FunctionFlow, message: str, event: dict[str, Any], parsed: ParsedCommand) -> str:
        handler_name = flow.handler_for(parsed.command)
        if not handler_name:
            logger.debug("no_handler_for_command", flow_id=flow.id, command=parsed.command)
            return ""

        entry = self.load_handler(handler_name, flow_id=flow.id)
        ctx = FunctionContext(
            message=message,
            command=parsed.command,
            args=parsed.args,
            event=event,
            config=flow,
            requests=self._requests,
        )
        try:
            result = entry(ctx)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            raise HandlerExecutionError(f"{handler_name}: {type(e).__name__}: {e}", flow_id=flow.id) from e
        return _to_text(result)

    def load_handler(self, handler_name: str, flow_id: str = "") -> Callable[[FunctionContext], Any]:
        """Import ``<functions_dir>/<handler_name>.py`` and return its entry point.

        The module is executed on every call so edits to handler files apply
        without a restart.
        """
        file_name = handler_name if handler_name.endswith(".py") else f"{handler_name}.py"
        path = (self._functions_dir / file_name).resolve()
        if self._functions_dir.resolve() not in path.parents:
            raise HandlerLoadError(f"Handler outside functions directory: {handler_name}", flow_id=flow_id)
        if not path.is_file():
            raise HandlerLoadError(f"Handler file not found: {path}", flow_id=flow_id)

        module = self._import_file(path, flow_id)
        for name in ENTRY_POINTS:
            entry = getattr(module, name, None)
            if callable(entry):
                return entry
        raise HandlerLoadError(f"Handler {file_name} defines no {' or '.join(ENTRY_POINTS)}()", flow_id=flow_id)

    @staticmethod
    def _import_file(path: Path, flow_id: str) -> ModuleType:
        module_name = f"mouse_bot_handler_{path.stem.replace('-', '_')}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise HandlerLoadError(f"Cannot load handler: {path}", flow_id=flow_id)
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise HandlerLoadError(f"Failed to import {path.name}: {type(e).__name__}: {e}", flow_id=flow_id) from e
        return module
