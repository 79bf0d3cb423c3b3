"""Time-boxed execution of inline flow scripts in an isolated interpreter."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from mouse_bot.config import SandboxConfig
from mouse_bot.errors import HandlerExecutionError
from mouse_bot.log import get_logger

logger = get_logger(__name__)

_RUNNER_SOURCE = (Path(__file__).parent / "sandbox_runner.py").read_text(encoding="utf-8")


def _child_env() -> dict[str, str]:
    """Empty environment; Windows cannot start an interpreter without SYSTEMROOT."""
    if os.name == "nt" and "SYSTEMROOT" in os.environ:
        return {"SYSTEMROOT": os.environ["SYSTEMROOT"]}
    return {}


class ScriptSandbox:
    """Runs a script defining ``run(input, command, args, event, config)``.

    The script is compiled with RestrictedPython and sees only the injected
    bindings and a small set of safe builtins: no imports, files, environment,
    logging or underscore attributes. The child exits as soon as ``timeout_ms``
    of wall-clock time has passed; a child that does not finish within that
    budget plus the start-up grace period is killed.

    Every call starts a fresh interpreter, which adds roughly 50-100 ms of
    start-up on top of the script's own run time. That cost is not counted
    against ``timeout_ms``.
    """

    def __init__(self, config: SandboxConfig):
        self._timeout_ms = config.timeout_ms
        self._hard_timeout = (config.timeout_ms + config.startup_grace_ms) / 1000

    async def run(self, code: str, bindings: dict[str, Any]) -> str:
        job = json.dumps(
            {"code": code, "bindings": bindings, "timeout_ms": self._timeout_ms},
            ensure_ascii=False,
            default=str,
        ).encode("utf-8")

        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-I",
            "-c",
            _RUNNER_SOURCE,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_child_env(),
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(input=job), timeout=self._hard_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise HandlerExecutionError(f"Script killed after {self._hard_timeout:.1f}s")

        try:
            result = json.loads(stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise HandlerExecutionError(
                f"Script runner exited with code {process.returncode}: {detail or '(no output)'}"
            )

        if not result.get("ok"):
            raise HandlerExecutionError(result.get("error") or "script failed")
        return result.get("output", "")
