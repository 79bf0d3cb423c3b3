"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from mouse_bot.ai.client import ModelClientCache
from mouse_bot.ai.conversation import ConversationHistory
from mouse_bot.ai.presets import PresetLoader
from mouse_bot.ai.role_executor import RoleExecutor
from mouse_bot.api import webhook
from mouse_bot.config import AppConfig, BotSeed, FlowSeed, ModelSeed
from mouse_bot.core.pipeline import WebhookPipeline
from mouse_bot.core.router import FlowRouter
from mouse_bot.core.types import FlowKind
from mouse_bot.functions.executor import FunctionExecutor
from mouse_bot.functions.sandbox import ScriptSandbox
from mouse_bot.log import get_logger
from mouse_bot.messenger.credentials import CredentialCache
from mouse_bot.messenger.dispatcher import OutboundDispatcher
from mouse_bot.messenger.sequencer import ReplySequencer
from mouse_bot.storage.config_repo import ConfigRepository
from mouse_bot.storage.database import Database
from mouse_bot.storage.models import (
    BotIdentity,
    FlowConfig,
    FunctionFlow,
    FunctionMapping,
    ModelConfig,
    RoleFlow,
)
from mouse_bot.storage.request_repo import RequestRepository

logger = get_logger(__name__)


def bot_from_seed(seed: BotSeed) -> BotIdentity:
    return BotIdentity(
        id=seed.id,
        name=seed.name,
        app_id=seed.app_id,
        app_secret=seed.app_secret,
        token=seed.token,
        sandbox=seed.sandbox,
        enabled=seed.enabled,
    )


def model_from_seed(seed: ModelSeed) -> ModelConfig:
    return ModelConfig(id=seed.id, name=seed.name, base_url=seed.base_url, api_key=seed.api_key)


def flow_from_seed(seed: FlowSeed) -> FlowConfig:
    common = dict(
        id=seed.id,
        bot_id=seed.bot_id,
        name=seed.name,
        enabled=seed.enabled,
        model_id=seed.model_id,
        model=seed.model,
        preset=seed.preset,
    )
    match seed.kind:
        case FlowKind.ROLE:
            return RoleFlow(role_description=seed.role_description, **common)
        case FlowKind.FUNCTION:
            return FunctionFlow(
                script=seed.script,
                functions=tuple(
                    FunctionMapping(command=f.command, handler=f.handler, description=f.description)
                    for f in seed.functions
                ),
                **common,
            )


class MouseBotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.config_repo = ConfigRepository(self.db)
        self.request_repo = RequestRepository(self.db)
        self.http = httpx.AsyncClient(timeout=config.qq.timeout)

        self.credentials = CredentialCache(
            self.http,
            token_url=config.qq.token_url,
            refresh_margin=config.reply.token_refresh_margin_seconds,
        )
        self.sequencer = ReplySequencer(ttl=config.reply.ttl_seconds, max_sequence=config.reply.max_sequence)
        self.dispatcher = OutboundDispatcher(self.http, self.credentials, self.sequencer, config.qq)

        self.roles = RoleExecutor(
            presets=PresetLoader(config.roles_dir),
            history=ConversationHistory(self.request_repo),
            requests=self.request_repo,
            clients=ModelClientCache(self.config_repo, config.llm),
            max_history_messages=config.history.max_messages,
        )
        self.functions = FunctionExecutor(config.functions_dir, ScriptSandbox(config.sandbox), self.request_repo)

        self.pipeline = WebhookPipeline(
            config_repo=self.config_repo,
            router=FlowRouter(self.config_repo),
            roles=self.roles,
            functions=self.functions,
            dispatcher=self.dispatcher,
        )

    async def start(self) -> None:
        """Open storage and load configured bots, models and flows."""
        await self.db.initialize()
        await self._seed()
        logger.info(
            "mouse_bot_started",
            bots=len(self.config.bots),
            flows=len(self.config.flows),
            background_processing=self.config.server.background_processing,
        )

    async def stop(self) -> None:
        await self.http.aclose()
        await self.db.close()
        logger.info("mouse_bot_stopped")

    async def _seed(self) -> None:
        """Make storage match the config file: unlisted records go, flows follow list order."""
        await self.config_repo.sync_bots([bot_from_seed(bot) for bot in self.config.bots])
        await self.config_repo.sync_models([model_from_seed(model) for model in self.config.models])
        await self.config_repo.sync_flows([flow_from_seed(flow) for flow in self.config.flows])

    def create_api(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(api: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        api = FastAPI(
            title="mouse-bot",
            description="QQ group bot webhook service with LLM role and function flows",
            lifespan=lifespan,
        )
        api.state.pipeline = self.pipeline
        api.state.background_processing = self.config.server.background_processing
        api.include_router(webhook.router)
        return api
