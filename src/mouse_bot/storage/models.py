"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from mouse_bot.core.types import CUSTOM_PRESET, FlowKind, RequestStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class BotIdentity:
    id: str
    app_id: str
    app_secret: str
    name: str = ""
    token: Optional[str] = None
    sandbox: bool = False
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class ModelConfig:
    id: str
    api_key: str
    name: str = ""
    base_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class FunctionMapping:
    command: str
    handler: str
    description: str = ""


@dataclass(frozen=True, slots=True)
class RoleFlow:
    id: str
    bot_id: str
    name: str = ""
    enabled: bool = True
    model_id: str = ""
    model: str = ""
    preset: str = ""  # role template name, or "custom"/"" for role_description
    role_description: str = ""
    kind: FlowKind = field(default=FlowKind.ROLE, init=False)

    @property
    def uses_inline_role(self) -> bool:
        return not self.preset or self.preset == CUSTOM_PRESET

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class FunctionFlow:
    id: str
    bot_id: str
    name: str = ""
    enabled: bool = True
    model_id: str = ""
    model: str = ""
    preset: str = ""  # handler name, or "custom" for the inline script
    script: str = ""
    functions: tuple[FunctionMapping, ...] = ()
    kind: FlowKind = field(default=FlowKind.FUNCTION, init=False)

    @property
    def uses_inline_script(self) -> bool:
        return self.preset == CUSTOM_PRESET

    def handler_for(self, command: str) -> str | None:
        """Resolve the file handler for *command*; None means nothing to run."""
        if not self.functions:
            return self.preset or None
        for mapping in self.functions:
            if mapping.command == command:
                return mapping.handler
        return None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


FlowConfig = Union[RoleFlow, FunctionFlow]


@dataclass
class RequestRecord:
    """One model invocation: created pending, finished exactly once."""

    flow_id: str
    bot_id: str
    model_id: str
    request: dict[str, Any]
    status: RequestStatus = RequestStatus.PENDING
    response: Optional[dict[str, Any]] = None
    tokens: int = 0
    request_at: datetime = field(default_factory=utcnow)
    response_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    id: Optional[int] = None
