"""Telegram client factory for topicbridge.

We explicitly manage the client's lifecycle (start/run_until_disconnected)
so it is obvious when the session is created and when it ends.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient


def build_client(session_name: str = "topicbridge") -> TelegramClient:
    """Create a Telethon client from environment variables.

    API_ID/API_HASH are read via python-dotenv to keep secrets out of the
    repo. The bot token is consumed later by ``start_client``.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", session_name)

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(session_name, int(api_id), api_hash)


async def start_client(client: TelegramClient) -> None:
    """Log the bridge bot in with BOT_TOKEN."""

    bot_token = os.getenv("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("Missing BOT_TOKEN in environment")
    await client.start(bot_token=bot_token)
    me = await client.get_me()
    logging.getLogger(__name__).info("Bot connected: @%s", getattr(me, "username", None))
