"""CLI entry point for sitepilot."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from sitepilot.app import SitePilotApp
from sitepilot.config import AppConfig, load_config
from sitepilot.log import setup_logging
from sitepilot.orchestrator.handler import ChatRequest

REPL_HELP = "Commands: /reset  /usage  /history  /archive  /quit"


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sitepilot",
        description="Conversational website builder: chat in, specialist agents out",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat_parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    chat_parser.add_argument("-e", "--env", default=".env", help="Path to .env file")
    chat_parser.add_argument("-u", "--user", default="cli", help="User id for the conversation")
    chat_parser.add_argument("-p", "--project", default=None, help="Project id to attach context to")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    check_parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    check_parser.add_argument("-e", "--env", default=".env", help="Path to .env file")

    # model-info command
    model_parser = subparsers.add_parser("model-info", help="Show model routing and fallback")
    model_parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    model_parser.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "model-info":
        _model_info(args.config, args.env)
    elif args.command == "chat":
        _run_chat(args.config, args.env, args.user, args.project)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Providers: {', '.join(p for p in config.provider_order if getattr(config, p, None)) or '(none)'}")
    print(f"  Classifier: {'model' if config.classifier.use_model else 'heuristic'} "
          f"(threshold={config.classifier.confidence_threshold})")
    for role in ("frontend", "backend"):
        endpoint = getattr(config.workers, role)
        print(f"  Worker {role}: {endpoint.url if endpoint else '(not configured)'}")
    deploy = config.deployment
    if deploy.enabled and deploy.api_token:
        print(f"  Deployment: {deploy.provider} (domain={deploy.main_domain or '-'})")
    else:
        print("  Deployment: disabled")


def _model_info(config_path: str, env_path: str) -> None:
    """Show model routing and fallback configuration."""
    config = _load_or_exit(config_path, env_path)
    model = config.model

    print("Model Configuration")
    print("=" * 50)
    print(f"  Primary  : {model.name} (temp={model.temperature}, max_tokens={model.max_tokens})")
    if model.fallback:
        print(f"  Fallback : {model.fallback.name} (temp={model.fallback.temperature})")
    else:
        print("  Fallback : (none)")
    print(f"  Timeout  : {model.timeout}s")
    for name in config.provider_order:
        provider_cfg = getattr(config, name, None)
        if provider_cfg is None:
            print(f"\n  Provider: {name} (not configured)")
            continue
        print(f"\n  Provider: {name}")
        print(f"    Patterns : {', '.join(provider_cfg.model_patterns)}")
        print(f"    Cost/1k  : {provider_cfg.cost_per_1k_tokens}")
        print(f"    Base URL : {provider_cfg.base_url or '(default)'}")
    print()


def _run_chat(config_path: str, env_path: str, user_id: str, project_id: Optional[str]) -> None:
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_output=config.log_json)
    try:
        asyncio.run(_chat_loop(config, user_id, project_id))
    except KeyboardInterrupt:
        pass


async def _chat_loop(config: AppConfig, user_id: str, project_id: Optional[str]) -> None:
    app = SitePilotApp(config)
    await app.start()
    session_id: Optional[str] = None
    print(REPL_HELP)

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue

            match text.lower():
                case "/quit" | "/exit":
                    break
                case "/reset":
                    session_id = None
                    print("Session reset. Starting fresh.")
                    continue
                case "/usage":
                    snapshot = app.gateway.usage.snapshot()
                    if not snapshot:
                        print("No model usage yet.")
                    for name, usage in snapshot.items():
                        print(f"  {name}: {usage.calls} calls, {usage.total_tokens} tokens, ${usage.cost:.4f}")
                    continue
                case "/history":
                    if session_id is None:
                        print("No conversation yet.")
                        continue
                    session = await app.store.get_conversation(session_id, limit=20)
                    for message in session.messages if session else []:
                        print(f"  [{message.index}] {message.role}: {message.content}")
                    continue
                case "/archive":
                    if session_id is not None:
                        await app.store.archive(session_id)
                        print(f"Conversation {session_id} archived.")
                    session_id = None
                    continue

            response = await app.handler.handle(
                ChatRequest(message=text, user_id=user_id, session_id=session_id, project_id=project_id)
            )
            session_id = response.session_id
            print(f"sitepilot> {response.content}")
            for step in response.next_steps or []:
                print(f"  • {step}")
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
