"""Telegram transport adapter.

Sends plain-text notifications through the bot's Telethon client.
"""

from __future__ import annotations

from telethon import errors

from core.errors import TransportFailure


class TelegramBotTransport:
    """TransportPort implementation backed by a bot-authorized TelegramClient."""

    def __init__(self, client) -> None:
        self._client = client

    async def send(self, external_id: int, text: str) -> None:
        """Send a message to a user; delivery errors become TransportFailure."""

        try:
            await self._client.send_message(external_id, text, link_preview=False)
        except errors.UserIsBlockedError as exc:
            raise TransportFailure("blocked by user") from exc
        except errors.FloodWaitError as exc:
            raise TransportFailure(f"flood wait {exc.seconds}s") from exc
        except errors.RPCError as exc:
            raise TransportFailure(f"telegram error: {exc.__class__.__name__}") from exc
        except ValueError as exc:
            # Telethon raises ValueError when it cannot resolve the peer.
            raise TransportFailure(f"unknown recipient: {exc}") from exc
        except OSError as exc:
            # ConnectionError while disconnected, OSError on socket failures.
            raise TransportFailure(f"connection error: {exc}") from exc
