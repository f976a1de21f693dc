"""Telegram notification sink and the schedule lifecycle messages it delivers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import BadRequest, TelegramError

from automation.shared.booking_contracts import BatchOutcome, BatchResult, ExamRecord


class TelegramNotifier:
    """Deliver messages to a chat id; failures are logged, never raised."""

    def __init__(
        self,
        bot: Optional[Bot] = None,
        *,
        token: Optional[str] = None,
        parse_mode: Optional[str] = ParseMode.MARKDOWN,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if bot is None and not token:
            raise ValueError("TelegramNotifier needs a bot instance or a token")
        self.bot = bot or Bot(token=token)
        self.parse_mode = parse_mode
        self.logger = logger or logging.getLogger('TelegramNotifier')

    async def notify(self, recipient_id: str, message: str) -> bool:
        if not recipient_id:
            self.logger.debug("Dropping notification without recipient: %s", message)
            return False
        try:
            await self.bot.send_message(chat_id=recipient_id, text=message, parse_mode=self.parse_mode)
            return True
        except BadRequest as exc:
            # Account names and error texts can break Markdown entities
            self.logger.warning("Markdown rejected for %s (%s); resending as plain text", recipient_id, exc)
            try:
                await self.bot.send_message(chat_id=recipient_id, text=message)
                return True
            except TelegramError as retry_exc:
                self.logger.error("Failed to send notification to %s: %s", recipient_id, retry_exc)
        except Exception as exc:
            self.logger.error("Failed to send notification to %s: %s", recipient_id, exc)
        return False


# ----------------------------------------------------------------------
# Schedule lifecycle messages
# ----------------------------------------------------------------------
def _when(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M %Z").strip()


def monitoring_started_message(name: str, run_at: datetime) -> str:
    return (
        "🚀 *Monitoring Started*\n"
        f"📝 Schedule: {name}\n"
        f"📅 Exam time: {_when(run_at)}\n"
        "🔄 Status: Starting to monitor for available slots..."
    )


def exam_found_message(name: str, record: ExamRecord) -> str:
    return (
        "📋 *Exam Found*\n"
        f"📝 Schedule: {name}\n"
        f"✅ Exam slot detected at {record.location or 'Unknown Location'}\n"
        "⏳ Waiting for booking to become available..."
    )


def booking_available_message(name: str, record: ExamRecord) -> str:
    return (
        "🎯 *Booking Available!*\n"
        f"📝 Schedule: {name}\n"
        f"🆔 OID: {record.record_id}\n"
        "🤖 Starting automated booking process..."
    )


def schedule_timeout_message(name: str, minutes: float) -> str:
    return (
        "⏰ *Schedule Timeout*\n"
        f"📝 Schedule: {name}\n"
        f"❌ No exam slots found within {minutes:.0f} minutes\n"
        "💡 The exam might not be available yet. You can create a new schedule to try again later."
    )


def schedule_error_message(name: str, context: str, details: str) -> str:
    return (
        "❌ *Schedule Error*\n"
        f"📝 Schedule: {name}\n"
        f"🚨 Error: {context}\n"
        f"💬 Details: {details}\n"
        f"⏰ Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
    )


def schedule_expired_message(name: str) -> str:
    return (
        "⏰ *Schedule Expired*\n"
        f"📝 Schedule: {name}\n"
        "❌ Monitoring stopped - exam time has passed\n"
        "💡 You can create a new schedule for future exams."
    )


def system_shutdown_message(name: str) -> str:
    return (
        "🛑 *System Shutdown*\n"
        f"📝 Schedule: {name}\n"
        "⚠️ Monitoring stopped due to system shutdown\n"
        "💡 Your schedule will resume when the system restarts."
    )


def batch_summary_message(name: str, result: BatchResult) -> str:
    headers = {
        BatchOutcome.SUCCESS: "✅ Schedule completed",
        BatchOutcome.PARTIAL: "⚠️ Schedule partially completed",
        BatchOutcome.STOPPED: "🛑 Schedule stopped",
        BatchOutcome.FAILED: "❌ Schedule failed",
    }
    return (
        f"{headers[result.outcome]}: {name}\n"
        f"👥 Accounts processed: {result.processed_count}/{result.submitted_count}\n"
        f"✅ Reached payment: {result.success_count}\n"
        f"❌ Failed: {result.error_count}"
    )
