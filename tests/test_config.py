import os

import pytest
from pydantic import ValidationError

from mouse_bot.app import bot_from_seed, flow_from_seed
from mouse_bot.config import AppConfig, FlowSeed, load_config
from mouse_bot.core.types import FlowKind
from mouse_bot.storage.models import FunctionFlow, FunctionMapping, RoleFlow

CONFIG_YAML = """
data_dir: {data_dir}
storage:
  db_path: ${{data_dir}}/bot.db
bots:
  - id: mouse
    app_id: "${{TEST_QQ_APP_ID}}"
    app_secret: "${{TEST_QQ_APP_SECRET}}"
    sandbox: true
models:
  - id: openai
    api_key: "${{TEST_OPENAI_KEY}}"
flows:
  - id: commands
    kind: function
    bot_id: mouse
    functions:
      - command: /ping
        handler: ping
  - id: chat
    kind: role
    bot_id: mouse
    model_id: openai
    preset: assistant
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_QQ_APP_ID", "102000001")
    monkeypatch.setenv("TEST_QQ_APP_SECRET", "secret")
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML.format(data_dir=tmp_path / "data"), encoding="utf-8")
    return path


class TestLoadConfig:
    def test_interpolates_environment(self, config_file, tmp_path):
        config = load_config(config_file, tmp_path / "missing.env")

        assert config.bots[0].app_id == "102000001"
        assert config.bots[0].app_secret == "secret"
        assert config.models[0].api_key == "sk-test"

    def test_data_dir_reference(self, config_file, tmp_path):
        config = load_config(config_file, tmp_path / "missing.env")

        assert config.storage.db_path == f"{tmp_path / 'data'}/bot.db"
        assert config.roles_dir == tmp_path / "data" / "roles"
        assert config.functions_dir == tmp_path / "data" / "functions"

    def test_defaults(self, config_file, tmp_path):
        config = load_config(config_file, tmp_path / "missing.env")

        assert config.server.port == 3000
        assert config.reply.max_sequence == 5
        assert config.reply.ttl_seconds == 300
        assert config.history.max_messages == 20
        assert config.sandbox.timeout_ms == 200

    def test_env_file_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_DOTENV_SECRET", raising=False)
        (tmp_path / ".env").write_text("TEST_DOTENV_SECRET=from-dotenv\n", encoding="utf-8")
        (tmp_path / "config.yaml").write_text(
            "bots:\n  - id: b\n    app_id: '1'\n    app_secret: ${TEST_DOTENV_SECRET}\n", encoding="utf-8"
        )

        config = load_config(tmp_path / "config.yaml", tmp_path / ".env")
        os.environ.pop("TEST_DOTENV_SECRET", None)

        assert config.bots[0].app_secret == "from-dotenv"

    def test_unset_variable_is_left_as_is(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_UNSET_VAR", raising=False)
        (tmp_path / "config.yaml").write_text("log_level: ${TEST_UNSET_VAR}\n", encoding="utf-8")

        assert load_config(tmp_path / "config.yaml", tmp_path / ".env").log_level == "${TEST_UNSET_VAR}"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / ".env")

    def test_unknown_flow_kind_rejected(self):
        with pytest.raises(ValidationError):
            AppConfig(flows=[{"id": "x", "kind": "webhook", "bot_id": "b"}])


class TestSeedConversion:
    def test_function_flow(self, config_file, tmp_path):
        config = load_config(config_file, tmp_path / "missing.env")

        flow = flow_from_seed(config.flows[0])

        assert isinstance(flow, FunctionFlow)
        assert flow.functions == (FunctionMapping(command="/ping", handler="ping"),)
        assert flow.kind == FlowKind.FUNCTION

    def test_role_flow(self, config_file, tmp_path):
        config = load_config(config_file, tmp_path / "missing.env")

        flow = flow_from_seed(config.flows[1])

        assert flow == RoleFlow(id="chat", bot_id="mouse", model_id="openai", preset="assistant")

    def test_bot(self, config_file, tmp_path):
        bot = bot_from_seed(load_config(config_file, tmp_path / "missing.env").bots[0])

        assert bot.sandbox is True
        assert bot.enabled is True

    def test_inline_script_flow(self):
        seed = FlowSeed(id="s", kind="function", bot_id="b", preset="custom", script="output = 'x'")

        flow = flow_from_seed(seed)

        assert flow.uses_inline_script
        assert flow.script == "output = 'x'"
