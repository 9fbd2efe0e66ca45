"""Chatline - conversational chat service.

Entry point for the application.
Usage:
    python -m chatline.main                     # Start CLI mode
    python -m chatline.main --init              # Initialize default config
    python -m chatline.main --web               # Start HTTP server (localhost:3001)
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

import structlog

from chatline.config import ChatlineConfig, get_chatline_home, load_config, save_default_config
from chatline.core.engine import ChatEngine
from chatline.core.memory.history import TurnHistory
from chatline.core.model_router import ModelRouter
from chatline.core.session.reaper import SessionReaper
from chatline.core.session.store import SessionStore

logger = structlog.get_logger()


def setup_logging() -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(20),  # INFO level
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def _load_env() -> None:
    """Load .env files from project root and ~/.chatline/."""
    from dotenv import load_dotenv

    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    chatline_env = get_chatline_home() / ".env"
    if chatline_env.exists():
        load_dotenv(chatline_env)


def build_engine(config: ChatlineConfig) -> tuple[ChatEngine, SessionReaper]:
    """Build the chat engine and its session reaper.

    This is the shared factory used by both CLI and web modes.
    """
    _load_env()

    sessions = config.sessions
    store = SessionStore(
        system_prompt=sessions.system_prompt,
        idle_timeout=timedelta(hours=sessions.idle_timeout_hours),
    )

    history = None
    if sessions.persist:
        history = TurnHistory(sessions.db_path)

    engine = ChatEngine(
        config=config,
        provider=ModelRouter(config),
        store=store,
        history=history,
    )
    reaper = SessionReaper(store, interval=timedelta(minutes=sessions.sweep_interval_minutes))
    return engine, reaper


async def async_main(config: ChatlineConfig) -> None:
    """Async entry point for CLI mode."""
    from chatline.ui.cli import CLI

    engine, reaper = build_engine(config)
    cli = CLI(engine=engine, config=config)
    await reaper.start()
    try:
        await cli.run()
    finally:
        await reaper.stop()


async def async_web_main(config: ChatlineConfig) -> None:
    """Async entry point for web mode."""
    from chatline.ui.web_server import WebServer

    engine, reaper = build_engine(config)
    server = WebServer(engine, config, reaper=reaper)
    host = config.web_ui.host
    port = config.web_ui.port
    print(f"Chatline server: http://{host}:{port}")
    print("Press Ctrl+C to stop.")
    await server.run()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Chatline - conversational chat service",
        prog="chatline",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Initialize default configuration",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config file (default: ~/.chatline/config.yaml)",
    )
    parser.add_argument(
        "--web",
        action="store_true",
        help="Start the HTTP server (default: http://127.0.0.1:3001)",
    )
    args = parser.parse_args()

    setup_logging()

    if args.init:
        config_path = save_default_config(
            Path(args.config) if args.config else None
        )
        print(f"Default config saved to: {config_path}")
        return

    config_path = Path(args.config) if args.config else None
    config = load_config(config_path)

    try:
        if args.web:
            asyncio.run(async_web_main(config))
        else:
            asyncio.run(async_main(config))
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
