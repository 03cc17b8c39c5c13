"""CLI interface for FuelIntel."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from fuelintel.bot import FuelIntelBot
from fuelintel.channels.telegram import TelegramChannel
from fuelintel.core.config import Config, load_config
from fuelintel.core.logging import setup_logging

logger = logging.getLogger(__name__)


async def run_bot(config: Config) -> None:
    """Run the Telegram bot until SIGINT or SIGTERM."""
    bot = FuelIntelBot(config)
    channel = TelegramChannel(
        token=config.telegram.token,
        allowed_users=config.telegram.allowed_users,
        allow_all=config.telegram.allow_all,
    )

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler() -> None:
        stop_event.set()

    loop.add_signal_handler(signal.SIGINT, signal_handler)
    loop.add_signal_handler(signal.SIGTERM, signal_handler)

    try:
        await bot.add_channel(channel)
        await channel.register_commands(bot.command_menu())
        logger.info("FuelIntel running, press Ctrl+C to stop")
        await stop_event.wait()
        logger.info("Shutdown signal received, stopping...")
    finally:
        await bot.stop()


def check_config(config: Config) -> int:
    """Print the effective configuration with secrets masked."""
    data = config.model_dump(mode="json")
    if data["telegram"].get("token"):
        data["telegram"]["token"] = "***"
    if data["nlp"].get("api_key"):
        data["nlp"]["api_key"] = "***"

    print(yaml.safe_dump(data, sort_keys=False, allow_unicode=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FuelIntel - fuel price Telegram bot")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (defaults apply when omitted)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override the configured logging level",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Environment file loaded before the config (default: .env)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("run", help="Start the Telegram bot (default)")
    subparsers.add_parser("check-config", help="Validate and print the configuration")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv(args.env_file)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.command == "check-config":
        return check_config(config)

    setup_logging(
        level=args.log_level or config.logging.level,
        directory=config.logging.directory,
        max_size_mb=config.logging.max_size_mb,
        backup_count=config.logging.backup_count,
    )

    try:
        asyncio.run(run_bot(config))
    except ValueError as e:
        logger.error(f"Startup failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
