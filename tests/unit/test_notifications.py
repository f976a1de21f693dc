from datetime import datetime

import pytest
from telegram.error import BadRequest, NetworkError

from automation.shared.booking_contracts import BatchResult, ExamRecord
from botapp.notifications import (
    TelegramNotifier,
    batch_summary_message,
    exam_found_message,
    schedule_timeout_message,
)
from tests.helpers import DummyLogger


class FakeBot:
    def __init__(self, errors=()):
        self.errors = list(errors)
        self.sent = []

    async def send_message(self, chat_id, text, parse_mode=None):
        self.sent.append((chat_id, text, parse_mode))
        if self.errors:
            raise self.errors.pop(0)


@pytest.mark.asyncio
async def test_notify_sends_markdown():
    bot = FakeBot()
    notifier = TelegramNotifier(bot, logger=DummyLogger())

    assert await notifier.notify("100", "*hello*")
    assert bot.sent == [("100", "*hello*", "Markdown")]


@pytest.mark.asyncio
async def test_bad_markdown_falls_back_to_plain_text():
    bot = FakeBot(errors=[BadRequest("Can't parse entities")])
    notifier = TelegramNotifier(bot, logger=DummyLogger())

    assert await notifier.notify("100", "[Asha_Rao] step")
    assert bot.sent[-1] == ("100", "[Asha_Rao] step", None)


@pytest.mark.asyncio
async def test_delivery_errors_are_logged_not_raised():
    logger = DummyLogger()
    notifier = TelegramNotifier(FakeBot(errors=[NetworkError("down")]), logger=logger)

    assert not await notifier.notify("100", "hi")
    assert not await notifier.notify("", "no recipient")
    assert logger.has("error", "Failed to send notification to 100")


def test_notifier_needs_bot_or_token():
    with pytest.raises(ValueError):
        TelegramNotifier()


def test_message_builders():
    record = ExamRecord(record_id="oid", window_start=datetime(2025, 1, 1), location="")
    result = BatchResult(
        schedule_id="s",
        match_id="oid",
        submitted_count=2,
        processed_count=2,
        success_count=1,
        error_count=1,
    )

    assert "Unknown Location" in exam_found_message("B2", record)
    assert "within 30 minutes" in schedule_timeout_message("B2", 30)
    summary = batch_summary_message("B2", result)
    assert summary.startswith("⚠️ Schedule partially completed: B2")
    assert "Accounts processed: 2/2" in summary
