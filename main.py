#!/usr/bin/env python3
"""
Discord Assessment Bot entry point.

Reads config.json (or the file named by ASSESSMENT_BOT_CONFIG), configures
logging and starts the bot.

Environment Variables:
    DISCORD_BOT_TOKEN: Bot token, takes precedence over the config file
    ASSESSMENT_BOT_CONFIG: Alternative path to the config file
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

PLACEHOLDER_TOKEN = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_config(path=None):
    """Read the JSON config file, exiting with a message when it is unusable."""
    config_path = Path(path or os.getenv('ASSESSMENT_BOT_CONFIG', 'config.json'))

    if not config_path.is_file():
        sys.exit(f"❌ {config_path} not found. Create it with 'bot', 'session' and 'logging' sections.")

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        sys.exit(f"❌ {config_path} is not valid JSON: {e}")
    except OSError as e:
        sys.exit(f"❌ Could not read {config_path}: {e}")

    if not isinstance(config, dict):
        sys.exit(f"❌ {config_path} must contain a JSON object")
    return config


def get_bot_token(config):
    token = os.getenv('DISCORD_BOT_TOKEN') or config.get('bot', {}).get('token')
    if not token or token == PLACEHOLDER_TOKEN:
        sys.exit("❌ No bot token: set DISCORD_BOT_TOKEN or bot.token in the config file.")
    return token


def setup_logging_from_config(config):
    """Console and file logging, with errors also collected in errors.log."""
    log_config = config.get('logging', {})
    level_name = str(log_config.get('level', 'INFO')).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8'),
            error_handler,
        ]
    )

    # discord.py logs every gateway event at INFO
    for name in ('discord', 'discord.http', 'discord.gateway'):
        logging.getLogger(name).setLevel(logging.WARNING)

    if not isinstance(logging.getLevelName(level_name), int):
        logging.getLogger(__name__).warning(f"Unknown log level {level_name!r}, using INFO")


async def run_bot_with_config():
    config = load_config()
    setup_logging_from_config(config)
    token = get_bot_token(config)

    from assessment_session.bot import run_bot
    await run_bot(token, config)


if __name__ == "__main__":
    try:
        asyncio.run(run_bot_with_config())
    except KeyboardInterrupt:
        print("\n👋 Assessment bot stopped")
