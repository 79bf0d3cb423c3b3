"""Append-only ledger of model invocations (request records)."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from mouse_bot.core.types import RequestStatus
from mouse_bot.log import get_logger
from mouse_bot.storage.database import Database
from mouse_bot.storage.models import RequestRecord, utcnow

logger = get_logger(__name__)


class RequestRepository:
    """Create, finish and query request records.

    A record is inserted as ``pending`` and moved to ``success`` or ``error``
    at most once: the terminal update only matches rows that are still
    pending, so a finished record is never rewritten.
    """

    def __init__(self, db: Database):
        self._db = db

    async def create_pending(self, record: RequestRecord) -> RequestRecord:
        cursor = await self._db.conn.execute(
            """INSERT INTO request_records
               (flow_id, bot_id, model_id, status, request_json, tokens, request_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                record.flow_id,
                record.bot_id,
                record.model_id,
                RequestStatus.PENDING.value,
                json.dumps(record.request, ensure_ascii=False),
                0,
                record.request_at.isoformat(),
            ),
        )
        await self._db.conn.commit()
        record.id = cursor.lastrowid
        record.status = RequestStatus.PENDING
        return record

    async def mark_success(self, record: RequestRecord, response: dict[str, Any], tokens: int) -> bool:
        return await self._finish(record, RequestStatus.SUCCESS, response, tokens)

    async def mark_error(self, record: RequestRecord, message: str) -> bool:
        return await self._finish(record, RequestStatus.ERROR, {"message": message}, record.tokens)

    async def _finish(
        self,
        record: RequestRecord,
        status: RequestStatus,
        response: dict[str, Any],
        tokens: int,
    ) -> bool:
        if record.id is None:
            raise ValueError("Request record has not been persisted")

        response_at = utcnow()
        duration_ms = int((response_at - record.request_at).total_seconds() * 1000)
        cursor = await self._db.conn.execute(
            """UPDATE request_records
               SET status = ?, response_json = ?, tokens = ?, response_at = ?, duration_ms = ?
               WHERE id = ? AND status = ?""",
            (
                status.value,
                json.dumps(response, ensure_ascii=False, default=str),
                tokens,
                response_at.isoformat(),
                duration_ms,
                record.id,
                RequestStatus.PENDING.value,
            ),
        )
        await self._db.conn.commit()

        if cursor.rowcount == 0:
            logger.warning("request_record_already_finished", record_id=record.id, status=status.value)
            return False

        record.status = status
        record.response = response
        record.tokens = tokens
        record.response_at = response_at
        record.duration_ms = duration_ms
        return True

    async def get(self, record_id: int) -> Optional[RequestRecord]:
        cursor = await self._db.conn.execute("SELECT * FROM request_records WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        return self._row_to_record(row) if row is not None else None

    async def recent_successful(self, flow_id: str, limit: int) -> list[RequestRecord]:
        """Newest-first successful records of a flow."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM request_records
               WHERE flow_id = ? AND status = ?
               ORDER BY request_at DESC, id DESC
               LIMIT ?""",
            (flow_id, RequestStatus.SUCCESS.value, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def delete_for_flow(self, flow_id: str) -> int:
        """Forget a flow's conversation. Returns number of deleted rows."""
        cursor = await self._db.conn.execute("DELETE FROM request_records WHERE flow_id = ?", (flow_id,))
        await self._db.conn.commit()
        return cursor.rowcount

    @staticmethod
    def _row_to_record(row) -> RequestRecord:
        return RequestRecord(
            id=row["id"],
            flow_id=row["flow_id"],
            bot_id=row["bot_id"],
            model_id=row["model_id"],
            status=RequestStatus(row["status"]),
            request=json.loads(row["request_json"]),
            response=json.loads(row["response_json"]) if row["response_json"] else None,
            tokens=row["tokens"],
            request_at=datetime.fromisoformat(row["request_at"]),
            response_at=datetime.fromisoformat(row["response_at"]) if row["response_at"] else None,
            duration_ms=row["duration_ms"],
        )
