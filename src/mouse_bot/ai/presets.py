"""Role presets: inline role text or ``data/roles/<name>.txt`` templates."""

from __future__ import annotations

import re
from pathlib import Path

from mouse_bot.ai.conversation import ConversationTurn
from mouse_bot.core.types import TurnRole
from mouse_bot.log import get_logger
from mouse_bot.storage.models import RoleFlow

logger = get_logger(__name__)

_ROLE_LINE = re.compile(r"^(system|user|assistant)\s*:(.*)$")


def parse_role_template(text: str) -> list[ConversationTurn]:
    """Split a role template into turns.

    Format::

        system: You are a cat girl...
        more system text

        user: Enter setup mode
        assistant: Setting up

    A ``<role>:`` line opens a turn, a blank line closes it, any other line is
    appended to the open turn. Lines outside a turn and empty turns are dropped.
    """
    turns: list[ConversationTurn] = []
    role: str | None = None
    buffer: list[str] = []

    def flush() -> None:
        if role and buffer:
            content = "\n".join(buffer).strip()
            if content:
                turns.append(ConversationTurn(role=role, content=content))
        buffer.clear()

    for line in text.splitlines():
        if not line.strip():
            flush()
            role = None
            continue

        match = _ROLE_LINE.match(line)
        if match:
            flush()
            role = match.group(1)
            buffer.append(match.group(2).strip())
        elif role:
            buffer.append(line)

    flush()
    return turns


class PresetLoader:
    """Loads the preset turns a role flow starts every conversation with."""

    def __init__(self, roles_dir: Path):
        self._roles_dir = roles_dir

    def load(self, flow: RoleFlow) -> list[ConversationTurn]:
        if not flow.uses_inline_role:
            path = self._roles_dir / f"{flow.preset}.txt"
            try:
                text = path.read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.warning("role_template_unreadable", flow_id=flow.id, path=str(path), error=str(e))
            else:
                if text:
                    return parse_role_template(text)

        if flow.role_description:
            return [ConversationTurn(role=TurnRole.SYSTEM.value, content=flow.role_description)]
        return []
