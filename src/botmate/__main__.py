"""CLI entry point for botmate."""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from botmate.ai.events import StreamEvent
from botmate.app import BotMateApp
from botmate.config import AppConfig, load_config
from botmate.errors import BotMateError, SessionNotFoundError
from botmate.log import setup_logging
from botmate.media.models import UploadFile
from botmate.storage.models import Session


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="botmate",
        description="Conversational bot sessions backed by Claude",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Chat with a bot interactively")
    _add_config_args(chat_parser)
    chat_parser.add_argument("--bot", default="default", help="Bot name")
    chat_parser.add_argument("--session", type=int, default=None, help="Continue an existing session")
    chat_parser.add_argument(
        "--attach",
        action="append",
        default=[],
        help="Image file to send with the first message (repeatable)",
    )

    sessions_parser = subparsers.add_parser("sessions", help="List a bot's recent sessions")
    _add_config_args(sessions_parser)
    sessions_parser.add_argument("--bot", default="default", help="Bot name")
    sessions_parser.add_argument("--limit", type=int, default=20, help="Maximum sessions to show")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load_or_exit(args.config, args.env)
    setup_logging(config.log_level)

    try:
        if args.command == "chat":
            asyncio.run(_chat(config, args.bot, args.session, args.attach))
        elif args.command == "sessions":
            asyncio.run(_list_sessions(config, args.bot, args.limit))
    except (BotMateError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml first")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        print(f"Configuration valid: {config_path}")
        print(f"  Account: {config.account}")
        print(f"  Chat model: {config.chat.model} (temp={config.chat.temperature})")
        if config.title.enabled:
            print(f"  Title model: {config.title.model} (max {config.title.max_length} chars)")
        else:
            print("  Title derivation: disabled")
        print(f"  Anthropic: {'configured' if config.anthropic else 'missing'}")
        print(f"  Storage: {config.storage.db_path}")
        print(f"  Media: {config.media.provider_name} -> {config.media.root_dir}")
        print(f"  Bots configured: {len(config.bots)}")
        for name in config.bots:
            print(f"    - {name}")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _read_attachments(paths: list[str]) -> list[UploadFile]:
    attachments = []
    for raw in paths:
        path = Path(raw)
        content_type, _ = mimetypes.guess_type(path.name)
        attachments.append(UploadFile(name=path.name, content=path.read_bytes(), content_type=content_type))
    return attachments


async def _chat(config: AppConfig, bot_name: str, session_id: int | None, attach: list[str]) -> None:
    async with BotMateApp(config) as app:
        bot = await app.bot_resolver.get_bot(bot_name, create_if_missing=True)

        session: Session | None = None
        if session_id is not None:
            session = await app.store.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            print(f"Continuing session {session.id}: {session.title}")

        def _print_increment(event: StreamEvent) -> None:
            print(event.content, end="", flush=True)

        app.orchestrator.on_stream.subscribe(_print_increment)
        attachments = _read_attachments(attach)

        while True:
            try:
                text = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            if not text.strip():
                continue
            if text.strip() in ("/quit", "/exit"):
                break

            if session is None:
                message = await app.orchestrator.submit_new_turn(bot.id, text, attachments=attachments)
            else:
                message = await app.orchestrator.append_turn(text, session, attachments=attachments)
            attachments = []
            session = message.session
            print(f"\n[{message.total_tokens} tokens]")

        if session is not None:
            print(f"Session {session.id}: {session.title}")


async def _list_sessions(config: AppConfig, bot_name: str, limit: int) -> None:
    async with BotMateApp(config) as app:
        bot = await app.bot_resolver.get_bot(bot_name)
        sessions = await app.store.list_sessions(bot.id, order_by="updated_at", limit=limit)
        if not sessions:
            print(f"No sessions for bot '{bot_name}'")
            return
        for s in sessions:
            marker = " [media]" if s.has_media else ""
            print(f"{s.id:>6}  {s.updated_at:%Y-%m-%d %H:%M}  {s.title}{marker}")


if __name__ == "__main__":
    main()
