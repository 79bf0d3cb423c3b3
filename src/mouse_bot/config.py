"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from mouse_bot.core.types import FlowKind


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    # Acknowledge the webhook first, then run flows after the response is sent
    background_processing: bool = False


class StorageConfig(BaseModel):
    db_path: str = "./data/mouse_bot.db"


class QQConfig(BaseModel):
    api_base: str = "https://api.sgroup.qq.com"
    sandbox_api_base: str = "https://sandbox.api.sgroup.qq.com"
    token_url: str = "https://bots.qq.com/app/getAppAccessToken"
    timeout: float = 10.0


class ReplyConfig(BaseModel):
    ttl_seconds: float = 300.0
    max_sequence: int = 5
    token_refresh_margin_seconds: float = 60.0


class HistoryConfig(BaseModel):
    max_messages: int = 20


class LLMConfig(BaseModel):
    timeout: float = 120.0
    max_retries: int = 2


class SandboxConfig(BaseModel):
    timeout_ms: int = 200
    # Interpreter start-up is not billed to the script; the process is killed past this
    startup_grace_ms: int = 3000


class BotSeed(BaseModel):
    id: str
    name: str = ""
    app_id: str
    app_secret: str
    token: Optional[str] = None
    sandbox: bool = False
    enabled: bool = True


class ModelSeed(BaseModel):
    id: str
    name: str = ""
    base_url: Optional[str] = None
    api_key: str


class FunctionMappingSeed(BaseModel):
    command: str
    handler: str
    description: str = ""


class FlowSeed(BaseModel):
    id: str
    name: str = ""
    kind: FlowKind
    bot_id: str
    enabled: bool = True
    model_id: str = ""
    model: str = ""
    preset: str = ""
    role_description: str = ""
    script: str = ""
    functions: list[FunctionMappingSeed] = Field(default_factory=list)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = False
    data_dir: str = "./data"
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    qq: QQConfig = Field(default_factory=QQConfig)
    reply: ReplyConfig = Field(default_factory=ReplyConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    bots: list[BotSeed] = Field(default_factory=list)
    models: list[ModelSeed] = Field(default_factory=list)
    flows: list[FlowSeed] = Field(default_factory=list)

    @property
    def roles_dir(self) -> Path:
        return Path(self.data_dir) / "roles"

    @property
    def functions_dir(self) -> Path:
        return Path(self.data_dir) / "functions"


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(raw_data.get("data_dir", "./data"))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
