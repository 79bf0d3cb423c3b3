"""Exception hierarchy shared by the webhook pipeline and the HTTP boundary.

Two families matter to callers:

- request-fatal errors (``SignatureError``, ``UnknownBot``, ``InvalidPayload``)
  change the HTTP response of the webhook call;
- ``FlowError`` subclasses abort a single flow and are logged by the pipeline,
  never surfaced to the platform.
"""

from __future__ import annotations


class MouseBotError(Exception):
    """Base class for all mouse-bot errors."""


class SignatureError(MouseBotError):
    """The request could not be authenticated."""


class MissingSignatureHeaders(SignatureError):
    def __init__(self) -> None:
        super().__init__("Missing signature headers")


class InvalidSignature(SignatureError):
    def __init__(self) -> None:
        super().__init__("Invalid signature")


class UnknownBot(MouseBotError):
    def __init__(self, bot_id: str):
        super().__init__(f"Bot not found: {bot_id}")
        self.bot_id = bot_id


class InvalidPayload(MouseBotError):
    """The webhook body is not a JSON object."""


class FlowError(MouseBotError):
    """A single flow failed; sibling flows and the acknowledgement are unaffected."""

    def __init__(self, message: str, flow_id: str = ""):
        super().__init__(message)
        self.flow_id = flow_id


class ModelInvocationError(FlowError):
    pass


class HandlerLoadError(FlowError):
    pass


class HandlerExecutionError(FlowError):
    pass


class DispatchError(FlowError):
    pass
