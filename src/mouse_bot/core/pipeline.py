"""Webhook pipeline: authenticate, route, execute flows, reply, acknowledge."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from mouse_bot.ai.role_executor import RoleExecutor
from mouse_bot.core.router import FlowRouter, ParsedCommand
from mouse_bot.errors import FlowError, InvalidPayload, UnknownBot
from mouse_bot.functions.executor import FunctionExecutor
from mouse_bot.log import bind_request_context, get_logger
from mouse_bot.messenger import signature
from mouse_bot.messenger.dispatcher import OutboundDispatcher
from mouse_bot.messenger.models import IncomingMessage, WebhookPayload
from mouse_bot.storage.config_repo import ConfigRepository
from mouse_bot.storage.models import BotIdentity, FlowConfig, FunctionFlow, RoleFlow

logger = get_logger(__name__)

ACK_BODY = {"code": 0, "message": "ok"}

# Receives the coroutine function and its arguments, e.g. BackgroundTasks.add_task
Scheduler = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class WebhookResult:
    body: dict[str, Any]
    handshake: bool = False

    @classmethod
    def ack(cls) -> WebhookResult:
        return cls(body=dict(ACK_BODY))


class WebhookPipeline:
    """Answers one inbound webhook request for one bot.

    Signature and lookup failures raise (the HTTP layer turns them into
    401/404). Everything after authentication is best effort: a failing flow
    or reply is logged and the platform still gets ``{code: 0, message: ok}``.
    """

    def __init__(
        self,
        config_repo: ConfigRepository,
        router: FlowRouter,
        roles: RoleExecutor,
        functions: FunctionExecutor,
        dispatcher: OutboundDispatcher,
    ):
        self._config_repo = config_repo
        self._router = router
        self._roles = roles
        self._functions = functions
        self._dispatcher = dispatcher

    async def handle(
        self,
        bot_id: str,
        headers: Mapping[str, str],
        raw_body: bytes,
        schedule: Optional[Scheduler] = None,
    ) -> WebhookResult:
        bot = await self._config_repo.get_bot(bot_id)
        if bot is None:
            raise UnknownBot(bot_id)

        payload = WebhookPayload.from_dict(self._parse_body(raw_body))

        if payload.is_handshake:
            plain_token = payload.data.get("plain_token")
            event_ts = payload.data.get("event_ts")
            if not isinstance(plain_token, str) or event_ts is None:
                raise InvalidPayload("Handshake payload lacks plain_token or event_ts")
            logger.info("webhook_handshake", bot_id=bot.id)
            return WebhookResult(
                body=signature.build_handshake_response(bot.app_secret, plain_token, str(event_ts)),
                handshake=True,
            )

        signature.authenticate(bot.app_secret, headers, raw_body)

        if not payload.is_group_at_message:
            logger.info("webhook_event_ignored", bot_id=bot.id, event_type=payload.event_type)
            return WebhookResult.ack()

        if not bot.enabled:
            logger.info("webhook_bot_disabled", bot_id=bot.id)
            return WebhookResult.ack()

        message = IncomingMessage.from_payload(bot.id, payload)
        if message is None:
            logger.info("webhook_message_empty", bot_id=bot.id)
            return WebhookResult.ack()

        if schedule is not None:
            schedule(self.process_message, bot, message, payload.raw)
        else:
            await self.process_message(bot, message, payload.raw)
        return WebhookResult.ack()

    @staticmethod
    def _parse_body(raw_body: bytes) -> dict[str, Any]:
        try:
            body = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidPayload(f"Body is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise InvalidPayload("Body is not a JSON object")
        return body

    async def process_message(self, bot: BotIdentity, message: IncomingMessage, event: dict[str, Any]) -> int:
        """Run every matching flow in stored order. Returns the number of replies sent."""
        bind_request_context(bot_id=bot.id, message_id=message.message_id)
        try:
            parsed, flows = await self._router.route(bot.id, message.text)
        except Exception:
            logger.exception("message_routing_failed")
            return 0
        logger.info("message_routed", command=parsed.command or None, flow_count=len(flows))

        sent = 0
        for flow in flows:
            reply = await self._run_isolated(self._execute, flow, message, event, parsed)
            if not reply or not reply.strip():
                continue
            result = await self._run_isolated(self._reply, flow, bot, message, reply.strip())
            if result is not None:
                sent += 1
        return sent

    async def _execute(
        self,
        flow: FlowConfig,
        message: IncomingMessage,
        event: dict[str, Any],
        parsed: ParsedCommand,
    ) -> str:
        match flow:
            case RoleFlow():
                return await self._roles.run(flow, message.text)
            case FunctionFlow():
                return await self._functions.run(flow, message.text, event, parsed)

    async def _reply(self, flow: FlowConfig, bot: BotIdentity, message: IncomingMessage, text: str):
        return await self._dispatcher.send(bot, message.group_openid, text, message.message_id)

    @staticmethod
    async def _run_isolated(step: Callable[..., Awaitable[Any]], flow: FlowConfig, *args: Any) -> Any:
        """Run one flow step; its failure must not reach sibling flows."""
        try:
            return await step(flow, *args)
        except FlowError as e:
            logger.error(
                "flow_failed",
                flow_id=flow.id,
                bot_id=flow.bot_id,
                step=step.__name__.lstrip("_"),
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception:
            logger.exception("flow_crashed", flow_id=flow.id, bot_id=flow.bot_id, step=step.__name__.lstrip("_"))
        return None
