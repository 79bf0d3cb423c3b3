"""Keyed CRUD over bot, model and flow configuration records."""

from __future__ import annotations

import json
from typing import Optional

from mouse_bot.core.types import FlowKind
from mouse_bot.log import get_logger
from mouse_bot.storage.database import Database
from mouse_bot.storage.models import (
    BotIdentity,
    FlowConfig,
    FunctionFlow,
    FunctionMapping,
    ModelConfig,
    RoleFlow,
)

logger = get_logger(__name__)


class ConfigRepository:
    """Find/upsert/delete for the configuration the webhook core reads."""

    def __init__(self, db: Database):
        self._db = db

    # -- bots ---------------------------------------------------------------

    async def get_bot(self, bot_id: str) -> Optional[BotIdentity]:
        cursor = await self._db.conn.execute("SELECT * FROM bots WHERE id = ?", (bot_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return BotIdentity(
            id=row["id"],
            name=row["name"],
            app_id=row["app_id"],
            app_secret=row["app_secret"],
            token=row["token"],
            sandbox=bool(row["sandbox"]),
            enabled=bool(row["enabled"]),
        )

    async def upsert_bot(self, bot: BotIdentity) -> None:
        await self._db.conn.execute(
            """INSERT INTO bots (id, name, app_id, app_secret, token, sandbox, enabled)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name, app_id = excluded.app_id,
                   app_secret = excluded.app_secret, token = excluded.token,
                   sandbox = excluded.sandbox, enabled = excluded.enabled""",
            (bot.id, bot.name, bot.app_id, bot.app_secret, bot.token, int(bot.sandbox), int(bot.enabled)),
        )
        await self._db.conn.commit()

    async def delete_bot(self, bot_id: str) -> int:
        cursor = await self._db.conn.execute("DELETE FROM bots WHERE id = ?", (bot_id,))
        await self._db.conn.commit()
        return cursor.rowcount

    async def sync_bots(self, bots: list[BotIdentity]) -> int:
        """Make the stored bots exactly ``bots``; returns how many were removed."""
        removed = await self._delete_except("bots", [bot.id for bot in bots])
        for bot in bots:
            await self.upsert_bot(bot)
        return removed

    # -- models -------------------------------------------------------------

    async def get_model(self, model_id: str) -> Optional[ModelConfig]:
        cursor = await self._db.conn.execute("SELECT * FROM models WHERE id = ?", (model_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return ModelConfig(id=row["id"], name=row["name"], base_url=row["base_url"], api_key=row["api_key"])

    async def upsert_model(self, model: ModelConfig) -> None:
        await self._db.conn.execute(
            """INSERT INTO models (id, name, base_url, api_key) VALUES (?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name, base_url = excluded.base_url, api_key = excluded.api_key""",
            (model.id, model.name, model.base_url, model.api_key),
        )
        await self._db.conn.commit()

    async def delete_model(self, model_id: str) -> int:
        cursor = await self._db.conn.execute("DELETE FROM models WHERE id = ?", (model_id,))
        await self._db.conn.commit()
        return cursor.rowcount

    async def sync_models(self, models: list[ModelConfig]) -> int:
        removed = await self._delete_except("models", [model.id for model in models])
        for model in models:
            await self.upsert_model(model)
        return removed

    # -- flows --------------------------------------------------------------

    async def get_flow(self, flow_id: str) -> Optional[FlowConfig]:
        cursor = await self._db.conn.execute("SELECT * FROM flows WHERE id = ?", (flow_id,))
        row = await cursor.fetchone()
        return self._row_to_flow(row) if row is not None else None

    async def list_flows(self, bot_id: str, enabled_only: bool = True) -> list[FlowConfig]:
        """Flows of a bot in stored order."""
        query = "SELECT * FROM flows WHERE bot_id = ?"
        if enabled_only:
            query += " AND enabled = 1"
        cursor = await self._db.conn.execute(query + " ORDER BY position ASC", (bot_id,))
        rows = await cursor.fetchall()
        return [self._row_to_flow(row) for row in rows]

    async def upsert_flow(self, flow: FlowConfig, position: Optional[int] = None) -> None:
        """Insert a flow at the end of the stored order, or update it in place.

        An explicit ``position`` places the flow there on insert and update.
        """
        match flow:
            case RoleFlow():
                role_description, script, functions = flow.role_description, "", []
            case FunctionFlow():
                role_description, script = "", flow.script
                functions = [
                    {"command": m.command, "handler": m.handler, "description": m.description}
                    for m in flow.functions
                ]

        if position is None:
            position_sql, move = "(SELECT COALESCE(MAX(position), 0) + 1 FROM flows)", ""
            params: tuple = ()
        else:
            position_sql, move = "?", ", position = excluded.position"
            params = (position,)

        await self._db.conn.execute(
            f"""INSERT INTO flows
               (id, position, bot_id, kind, name, enabled, model_id, model,
                preset, role_description, script, functions_json)
               VALUES (?, {position_sql},
                       ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   bot_id = excluded.bot_id, kind = excluded.kind, name = excluded.name,
                   enabled = excluded.enabled, model_id = excluded.model_id,
                   model = excluded.model, preset = excluded.preset,
                   role_description = excluded.role_description,
                   script = excluded.script, functions_json = excluded.functions_json{move}""",
            (
                flow.id,
                *params,
                flow.bot_id,
                flow.kind.value,
                flow.name,
                int(flow.enabled),
                flow.model_id,
                flow.model,
                flow.preset,
                role_description,
                script,
                json.dumps(functions, ensure_ascii=False),
            ),
        )
        await self._db.conn.commit()

    async def delete_flow(self, flow_id: str) -> int:
        cursor = await self._db.conn.execute("DELETE FROM flows WHERE id = ?", (flow_id,))
        await self._db.conn.commit()
        return cursor.rowcount

    async def sync_flows(self, flows: list[FlowConfig]) -> int:
        """Make the stored flows exactly ``flows``, run in list order.

        Flows missing from ``flows`` are deleted and positions are reassigned
        from list order. Returns how many flows were removed.
        """
        removed = await self._delete_except("flows", [flow.id for flow in flows])
        for position, flow in enumerate(flows, start=1):
            await self.upsert_flow(flow, position=position)
        return removed

    async def _delete_except(self, table: str, keep_ids: list[str]) -> int:
        placeholders = ", ".join("?" for _ in keep_ids)
        query = f"DELETE FROM {table}"
        if keep_ids:
            query += f" WHERE id NOT IN ({placeholders})"
        cursor = await self._db.conn.execute(query, keep_ids)
        await self._db.conn.commit()
        if cursor.rowcount:
            logger.info("config_records_removed", table=table, count=cursor.rowcount)
        return cursor.rowcount

    @staticmethod
    def _row_to_flow(row) -> FlowConfig:
        common = dict(
            id=row["id"],
            bot_id=row["bot_id"],
            name=row["name"],
            enabled=bool(row["enabled"]),
            model_id=row["model_id"],
            model=row["model"],
            preset=row["preset"],
        )
        match FlowKind(row["kind"]):
            case FlowKind.ROLE:
                return RoleFlow(role_description=row["role_description"], **common)
            case FlowKind.FUNCTION:
                functions = tuple(
                    FunctionMapping(
                        command=item.get("command", ""),
                        handler=item.get("handler", ""),
                        description=item.get("description", ""),
                    )
                    for item in json.loads(row["functions_json"] or "[]")
                )
                return FunctionFlow(script=row["script"], functions=functions, **common)
