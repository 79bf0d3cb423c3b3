"""Classify incoming text and pick the flows that should react to it."""

from __future__ import annotations

from dataclasses import dataclass, field

from mouse_bot.core.types import COMMAND_MARKER
from mouse_bot.log import get_logger
from mouse_bot.storage.config_repo import ConfigRepository
from mouse_bot.storage.models import FlowConfig, FunctionFlow, RoleFlow

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ParsedCommand:
    command: str  # "" for free-form text, otherwise the first token including "/"
    args: str

    @property
    def is_command(self) -> bool:
        return bool(self.command)


@dataclass(slots=True)
class FlowSelection:
    function_flows: list[FunctionFlow] = field(default_factory=list)
    role_flows: list[RoleFlow] = field(default_factory=list)

    def for_message(self, parsed: ParsedCommand) -> list[FlowConfig]:
        """Commands go to function flows only, free text to role flows only."""
        if parsed.is_command:
            return list(self.function_flows)
        return list(self.role_flows)


def parse_command(text: str) -> ParsedCommand:
    """Split ``"/cmd a  b"`` into ``("/cmd", "a b")``; other text is passed through."""
    if not text.startswith(COMMAND_MARKER):
        return ParsedCommand(command="", args=text)
    parts = text.split()
    return ParsedCommand(command=parts[0], args=" ".join(parts[1:]))


class FlowRouter:
    def __init__(self, config_repo: ConfigRepository):
        self._config_repo = config_repo

    async def select_flows(self, bot_id: str) -> FlowSelection:
        selection = FlowSelection()
        for flow in await self._config_repo.list_flows(bot_id, enabled_only=True):
            match flow:
                case FunctionFlow():
                    selection.function_flows.append(flow)
                case RoleFlow():
                    selection.role_flows.append(flow)
        logger.debug(
            "flows_selected",
            bot_id=bot_id,
            function_flows=len(selection.function_flows),
            role_flows=len(selection.role_flows),
        )
        return selection

    async def route(self, bot_id: str, text: str) -> tuple[ParsedCommand, list[FlowConfig]]:
        parsed = parse_command(text)
        selection = await self.select_flows(bot_id)
        return parsed, selection.for_message(parsed)
