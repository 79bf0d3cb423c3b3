"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class FlowKind(StrEnum):
    ROLE = "role"
    FUNCTION = "function"


class RequestStatus(StrEnum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class TurnRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


# Flow preset value meaning "use the inline role text / inline script"
CUSTOM_PRESET = "custom"

HANDSHAKE_OP = 13
GROUP_AT_MESSAGE_CREATE = "GROUP_AT_MESSAGE_CREATE"
COMMAND_MARKER = "/"
