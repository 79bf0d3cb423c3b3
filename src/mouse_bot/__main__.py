"""CLI entry point for mouse-bot."""

from __future__ import annotations

import argparse
import sys

import uvicorn

from mouse_bot.app import MouseBotApp
from mouse_bot.config import AppConfig, load_config
from mouse_bot.core.types import CUSTOM_PRESET, FlowKind
from mouse_bot.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="mouse-bot",
        description="QQ group bot webhook service with LLM role and function flows",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (("start", "Start the webhook server"), ("config-check", "Validate configuration")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Listen: {config.server.host}:{config.server.port}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Replies: max {config.reply.max_sequence} per message within {config.reply.ttl_seconds:.0f}s")
    print(f"  Bots configured: {len(config.bots)}")
    for bot in config.bots:
        state = "enabled" if bot.enabled else "disabled"
        sandbox = ", sandbox" if bot.sandbox else ""
        print(f"    - {bot.id} (app {bot.app_id}, {state}{sandbox})")
    print(f"  Models configured: {len(config.models)}")
    for model in config.models:
        print(f"    - {model.id} [{model.base_url or 'default endpoint'}]")
    print(f"  Flows configured: {len(config.flows)}")
    for flow in config.flows:
        if flow.kind == FlowKind.ROLE:
            source = flow.preset if flow.preset and flow.preset != CUSTOM_PRESET else "inline role"
        elif flow.preset == CUSTOM_PRESET:
            source = "inline script"
        else:
            commands = ", ".join(f.command for f in flow.functions)
            source = commands or flow.preset or "(no handler)"
        print(f"    - {flow.id} -> bot {flow.bot_id} [{flow.kind}: {source}]")


def _run(config_path: str, env_path: str) -> None:
    """Load config and serve the webhook API."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_logs=config.json_logs)

    api = MouseBotApp(config).create_api()
    uvicorn.run(
        api,
        host=config.server.host,
        port=config.server.port,
        log_level=config.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
