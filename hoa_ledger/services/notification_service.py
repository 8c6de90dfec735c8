"""Notification delivery for ledger events.

Ledger services never talk to a messaging client directly: they receive a
Notifier, built once by the entry point and started/stopped with it.
"""

import asyncio
import html
import logging
from typing import Any, Callable, Protocol

from telegram import Bot
from telegram.error import TelegramError

from hoa_ledger.config import LedgerSettings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Best-effort delivery of a message to a user."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def notify(
        self, user_id: int, title: str, message: str, data: dict[str, Any] | None = None
    ) -> None: ...


class LoggingNotifier:
    """Notifier that only writes messages to the log (no bot configured)."""

    async def start(self) -> None:
        logger.info("Notifications will be logged only (no TELEGRAM_BOT_TOKEN)")

    async def stop(self) -> None:
        return None

    async def notify(
        self, user_id: int, title: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        logger.info("Notification for user %s: %s - %s %s", user_id, title, message, data or {})


class TelegramNotifier:
    """Service for sending ledger notifications as Telegram messages."""

    def __init__(self, bot: Bot, resolve_chat_id: Callable[[int], str | None]):
        """Initialize notifier.

        Args:
            bot: Telegram bot client (initialized by start())
            resolve_chat_id: Maps a user id to its Telegram chat id, or None.
                Blocking; called in a worker thread.
        """
        self.bot = bot
        self.resolve_chat_id = resolve_chat_id
        self._started = False

    async def start(self) -> None:
        if not self._started:
            await self.bot.initialize()
            self._started = True
            logger.info("Telegram notifier started")

    async def stop(self) -> None:
        if self._started:
            await self.bot.shutdown()
            self._started = False
            logger.info("Telegram notifier stopped")

    async def send_message(self, chat_id: str, text: str, parse_mode: str = "HTML") -> None:
        """Send message to a Telegram chat.

        Args:
            chat_id: Telegram chat ID
            text: Message text
            parse_mode: Message parse mode (HTML or Markdown). Default: HTML.
        """
        try:
            await self.bot.send_message(chat_id=int(chat_id), text=text, parse_mode=parse_mode)
        except TelegramError as e:
            logger.error("Error sending message to %s: %s", chat_id, e)
            raise

    async def notify(
        self, user_id: int, title: str, message: str, data: dict[str, Any] | None = None
    ) -> None:
        # Blocking database lookup
        chat_id = await asyncio.to_thread(self.resolve_chat_id, user_id)
        if not chat_id:
            logger.debug("User %s has no Telegram chat, skipping notification", user_id)
            return
        text = f"<b>{html.escape(title)}</b>\n{html.escape(message)}"
        await self.send_message(chat_id, text)


def build_notifier(settings: LedgerSettings, session_factory) -> Notifier:
    """Build the notifier configured in settings.

    Args:
        settings: Ledger settings (TELEGRAM_BOT_TOKEN decides the implementation)
        session_factory: Callable returning a new Session, used for chat id lookups
    """
    if not settings.telegram_bot_token:
        return LoggingNotifier()

    from hoa_ledger.services.directory_service import CommunityDirectory

    def resolve_chat_id(user_id: int) -> str | None:
        db = session_factory()
        try:
            return CommunityDirectory(db).telegram_chat_id(user_id)
        finally:
            db.close()

    return TelegramNotifier(Bot(token=settings.telegram_bot_token), resolve_chat_id)


__all__ = ["Notifier", "LoggingNotifier", "TelegramNotifier", "build_notifier"]
