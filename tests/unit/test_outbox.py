"""Unit tests for the post-commit notification outbox and notifiers."""

import threading
from unittest.mock import AsyncMock

import pytest
from telegram.error import TelegramError

from hoa_ledger.config import LedgerSettings
from hoa_ledger.services.notification_service import (
    LoggingNotifier,
    TelegramNotifier,
    build_notifier,
)
from hoa_ledger.services.outbox import Outbox


@pytest.mark.unit
class TestOutbox:
    def test_events_without_recipient_are_ignored(self):
        outbox = Outbox()
        outbox.add(None, "title", "message")
        outbox.add(7, "title", "message", type="charge_issued")
        assert len(outbox) == 1
        assert outbox.events[0].data == {"type": "charge_issued"}

    @pytest.mark.asyncio
    async def test_dispatch_delivers_and_empties(self, notifier):
        outbox = Outbox()
        outbox.add(1, "a", "b")
        outbox.add(2, "c", "d")

        delivered = await outbox.dispatch(notifier)

        assert delivered == 2
        assert [item[0] for item in notifier.sent] == [1, 2]
        assert len(outbox) == 0

    @pytest.mark.asyncio
    async def test_dispatch_swallows_delivery_failures(self, failing_notifier):
        outbox = Outbox()
        outbox.add(1, "a", "b")
        delivered = await outbox.dispatch(failing_notifier)
        assert delivered == 0
        assert len(outbox) == 0

    @pytest.mark.asyncio
    async def test_dispatch_without_notifier(self):
        outbox = Outbox()
        outbox.add(1, "a", "b")
        assert await outbox.dispatch(None) == 0


@pytest.mark.unit
class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_lifecycle_initializes_and_shuts_down_bot(self):
        bot = AsyncMock()
        notifier = TelegramNotifier(bot, lambda user_id: "555")

        await notifier.start()
        await notifier.start()
        await notifier.stop()

        bot.initialize.assert_awaited_once()
        bot.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_notify_escapes_html(self):
        bot = AsyncMock()
        notifier = TelegramNotifier(bot, lambda user_id: "555")

        await notifier.notify(3, "Pago <aprobado>", "Folio & monto")

        bot.send_message.assert_awaited_once()
        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == 555
        assert kwargs["parse_mode"] == "HTML"
        assert kwargs["text"] == "<b>Pago &lt;aprobado&gt;</b>\nFolio &amp; monto"

    @pytest.mark.asyncio
    async def test_chat_lookup_runs_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        lookup_threads = []

        def resolve(user_id):
            lookup_threads.append(threading.get_ident())
            return "555"

        bot = AsyncMock()
        notifier = TelegramNotifier(bot, resolve)
        await notifier.notify(3, "t", "m")

        assert len(lookup_threads) == 1
        assert lookup_threads[0] != loop_thread
        bot.send_message.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_user_without_chat_is_skipped(self):
        bot = AsyncMock()
        notifier = TelegramNotifier(bot, lambda user_id: None)
        await notifier.notify(3, "t", "m")
        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_errors_propagate_to_outbox(self):
        bot = AsyncMock()
        bot.send_message.side_effect = TelegramError("blocked")
        notifier = TelegramNotifier(bot, lambda user_id: "555")
        with pytest.raises(TelegramError):
            await notifier.notify(3, "t", "m")


@pytest.mark.unit
class TestBuildNotifier:
    def test_without_token_logs_only(self):
        notifier = build_notifier(LedgerSettings(telegram_bot_token=None), session_factory=None)
        assert isinstance(notifier, LoggingNotifier)

    def test_with_token_uses_telegram(self):
        settings = LedgerSettings(telegram_bot_token="123456:TEST-token")
        notifier = build_notifier(settings, session_factory=None)
        assert isinstance(notifier, TelegramNotifier)

    @pytest.mark.asyncio
    async def test_chat_ids_come_from_the_directory(self, session_factory, community):
        settings = LedgerSettings(telegram_bot_token="123456:TEST-token")
        notifier = build_notifier(settings, session_factory)
        notifier.bot = AsyncMock()
        resident = community.residents[0]

        await notifier.notify(resident.id, "t", "m")

        notifier.bot.send_message.assert_awaited_once()
        assert notifier.bot.send_message.await_args.kwargs["chat_id"] == int(resident.telegram_id)
