"""CLI entry point for agent-chat."""

from __future__ import annotations

import argparse
import asyncio
import sys

import httpx

from agent_chat.app import AgentChatApp
from agent_chat.config import AppConfig, load_config
from agent_chat.log import setup_logging
from agent_chat.notify import ReloadNotifier


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="agent-chat",
        description="Agent-serving backend for embeddable LLM chat widgets",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def _add_config_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    _add_config_args(subparsers.add_parser("start", help="Start the HTTP server"))
    _add_config_args(subparsers.add_parser("config-check", help="Validate configuration"))
    _add_config_args(subparsers.add_parser("init-db", help="Create the database schema"))

    info_parser = subparsers.add_parser(
        "agent-info", help="Show the resolved config and instruction for a chatbot"
    )
    info_parser.add_argument("chatbot_id", help="Chatbot ID")
    _add_config_args(info_parser)

    reload_parser = subparsers.add_parser(
        "reload", help="Ask a running server to drop its cached config for a chatbot"
    )
    reload_parser.add_argument("chatbot_id", help="Chatbot ID")
    reload_parser.add_argument("--url", default=None, help="Server base URL (default: from config)")
    _add_config_args(reload_parser)

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "init-db":
        asyncio.run(_init_db(_load_or_exit(args.config, args.env)))
    elif args.command == "agent-info":
        asyncio.run(_agent_info(_load_or_exit(args.config, args.env), args.chatbot_id))
    elif args.command == "reload":
        config = _load_or_exit(args.config, args.env)
        if not asyncio.run(_notify_reload(config, args.chatbot_id, args.url)):
            sys.exit(1)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and .env.example to .env")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Logging: {config.log_level} ({config.log_format})")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Cache TTL: {config.cache.ttl_seconds}s")
    print(f"  Default model: {config.defaults.model}")
    print(f"  Anthropic: {'configured' if config.anthropic else 'NOT configured'}")
    token = "configured" if config.server.internal_api_token else "NOT configured"
    print(f"  Internal reload token: {token}")
    print(f"  Listen: {config.server.host}:{config.server.port}")


async def _init_db(config: AppConfig) -> None:
    app = AgentChatApp(config)
    await app.start()
    await app.stop()
    print(f"Database ready: {config.storage.db_path}")


async def _agent_info(config: AppConfig, chatbot_id: str) -> None:
    """Print the resolved chatbot and the instruction its agent would run with."""
    app = AgentChatApp(config)
    await app.start()
    try:
        chatbot = await app.loader.load_chatbot_config(chatbot_id)
        if chatbot is None:
            print(f"Chatbot not found: {chatbot_id}", file=sys.stderr)
            sys.exit(1)
        agent = await app.agent_factory.get_or_build_agent(chatbot)
        knowledge = await app.loader.load_knowledge_for_chatbot(chatbot_id)

        print(f"Chatbot: {chatbot.name} ({chatbot.id})")
        print("=" * 50)
        print(f"  Active      : {chatbot.is_active}")
        print(f"  Agent name  : {agent.name}")
        print(f"  Model       : {agent.model}")
        print(f"  Temperature : {agent.temperature}")
        print(f"  Max tokens  : {agent.max_tokens}")
        print(f"  Knowledge   : {len(knowledge)} entries")
        print()
        print(agent.instruction)
    finally:
        await app.stop()


async def _notify_reload(
    config: AppConfig,
    chatbot_id: str,
    base_url: str | None = None,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """POST the reload endpoint of a running server with the configured token."""
    if base_url is None:
        host = config.server.host
        if host in ("0.0.0.0", "::"):
            host = "127.0.0.1"
        base_url = f"http://{host}:{config.server.port}"

    notifier = ReloadNotifier(base_url, config.server.internal_api_token, client=client)
    try:
        accepted = await notifier.notify(chatbot_id)
    finally:
        await notifier.close()

    if accepted:
        print(f"Reloaded chatbot {chatbot_id} on {base_url}")
    else:
        print(f"Reload of chatbot {chatbot_id} on {base_url} failed", file=sys.stderr)
    return accepted


def _run(config_path: str, env_path: str) -> None:
    """Load config and serve the HTTP API."""
    import uvicorn

    from agent_chat.server import create_app

    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    api = create_app(AgentChatApp(config))
    uvicorn.run(api, host=config.server.host, port=config.server.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
