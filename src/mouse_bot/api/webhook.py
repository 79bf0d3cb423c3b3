"""HTTP boundary: the per-bot webhook endpoint and a health probe."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from mouse_bot.core.pipeline import WebhookPipeline
from mouse_bot.errors import InvalidPayload, SignatureError, UnknownBot
from mouse_bot.log import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/webhook/{bot_id}")
async def handle_webhook(bot_id: str, request: Request, background_tasks: BackgroundTasks):
    """Receive a QQ bot platform callback.

    - op=13 handshake -> ``{plain_token, signature}``
    - any verified event -> ``{code: 0, message: "ok"}``
    - bad or missing signature -> 401
    """
    pipeline: WebhookPipeline = request.app.state.pipeline
    raw_body = await request.body()
    schedule = background_tasks.add_task if request.app.state.background_processing else None

    try:
        result = await pipeline.handle(bot_id, request.headers, raw_body, schedule=schedule)
    except SignatureError as e:
        logger.warning("webhook_rejected", bot_id=bot_id, reason=str(e))
        return JSONResponse(status_code=401, content={"error": str(e)})
    except UnknownBot as e:
        logger.warning("webhook_unknown_bot", bot_id=bot_id)
        return JSONResponse(status_code=404, content={"error": str(e)})
    except InvalidPayload as e:
        logger.warning("webhook_invalid_payload", bot_id=bot_id, error=str(e))
        return JSONResponse(status_code=400, content={"error": str(e)})

    return result.body


@router.get("/health")
async def health():
    return {"status": "ok"}
