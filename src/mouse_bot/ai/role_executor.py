"""Role flows: preset + replayed history + current message -> model reply."""

from __future__ import annotations

from mouse_bot.ai.client import ModelClientCache
from mouse_bot.ai.conversation import DEFAULT_MAX_MESSAGES, ConversationHistory, ConversationTurn
from mouse_bot.ai.presets import PresetLoader
from mouse_bot.core.types import TurnRole
from mouse_bot.errors import ModelInvocationError
from mouse_bot.log import get_logger
from mouse_bot.storage.models import RequestRecord, RoleFlow
from mouse_bot.storage.request_repo import RequestRepository

logger = get_logger(__name__)

EMPTY_REPLY_PLACEHOLDER = "(the model returned no content)"


class RoleExecutor:
    """Runs one role flow and records the invocation in the request ledger."""

    def __init__(
        self,
        presets: PresetLoader,
        history: ConversationHistory,
        requests: RequestRepository,
        clients: ModelClientCache,
        max_history_messages: int = DEFAULT_MAX_MESSAGES,
    ):
        self._presets = presets
        self._history = history
        self._requests = requests
        self._clients = clients
        self._max_history_messages = max_history_messages

    async def build_messages(self, flow: RoleFlow, user_text: str) -> list[dict[str, str]]:
        turns: list[ConversationTurn] = []
        turns.extend(self._presets.load(flow))
        turns.extend(await self._history.load(flow.id, self._max_history_messages))
        turns.append(ConversationTurn(role=TurnRole.USER.value, content=user_text))
        return [turn.to_message() for turn in turns]

    async def run(self, flow: RoleFlow, user_text: str) -> str:
        messages = await self.build_messages(flow, user_text)
        client = await self._clients.get(flow.model_id)
        model = flow.model or flow.model_id

        record = await self._requests.create_pending(
            RequestRecord(
                flow_id=flow.id,
                bot_id=flow.bot_id,
                model_id=flow.model_id,
                request={"model": model, "messages": messages},
            )
        )

        try:
            response = await client.chat(model=model, messages=messages)
        except Exception as e:
            await self._requests.mark_error(record, str(e))
            logger.warning("model_invocation_failed", flow_id=flow.id, record_id=record.id, error=str(e))
            raise ModelInvocationError(str(e), flow_id=flow.id) from e

        await self._requests.mark_success(record, response.raw or {}, response.total_tokens)
        logger.info(
            "model_invocation_succeeded",
            flow_id=flow.id,
            record_id=record.id,
            tokens=response.total_tokens,
            duration_ms=record.duration_ms,
        )
        return response.text or EMPTY_REPLY_PLACEHOLDER
