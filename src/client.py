"""Telethon bot client factory for mangalink.

Secrets come from the environment (.env via python-dotenv). The bot never
logs in as a user, so the only interactive step Telethon could ask for is
replaced by passing the bot token to start().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv
from telethon import TelegramClient

LOGGER = logging.getLogger(__name__)

SECRET_ENV_NAMES = ("BOT_TOKEN", "API_HASH")


@dataclass(frozen=True)
class BotCredentials:
    api_id: int
    api_hash: str
    bot_token: str
    session_name: str = "mangalink-bot"


def load_credentials() -> BotCredentials:
    """Read every bot secret at once and report all missing names together."""

    load_dotenv()
    values = {name: os.getenv(name, "").strip() for name in ("API_ID", "API_HASH", "BOT_TOKEN")}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise RuntimeError(f"Missing {', '.join(missing)} in environment")
    try:
        api_id = int(values["API_ID"])
    except ValueError as exc:
        raise RuntimeError("API_ID must be an integer") from exc

    return BotCredentials(
        api_id=api_id,
        api_hash=values["API_HASH"],
        bot_token=values["BOT_TOKEN"],
        session_name=os.getenv("SESSION_NAME") or "mangalink-bot",
    )


def start_bot(credentials: BotCredentials) -> TelegramClient:
    """Build the client and authorize it as the bot."""

    LOGGER.info("Connecting bot session %s", credentials.session_name)
    client = TelegramClient(credentials.session_name, credentials.api_id, credentials.api_hash)
    return client.start(bot_token=credentials.bot_token)
