"""
Telegram alerts for studio administrators
"""
import logging
from datetime import datetime
from typing import List, Optional

from telegram import Bot
from telegram.error import TelegramError

from . import settings

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends booking activity to the admin chats"""

    def __init__(self, bot_token: Optional[str] = None, chat_ids: Optional[str] = None):
        self.bot_token = bot_token if bot_token is not None else settings.TELEGRAM_BOT_TOKEN
        self.admin_chat_ids = self._parse_chat_ids(
            chat_ids if chat_ids is not None else settings.TELEGRAM_ADMIN_CHAT_IDS
        )
        self.bot = None

        if self.bot_token:
            self.bot = Bot(token=self.bot_token)
            logger.info("✅ Telegram bot initialised")
        else:
            logger.warning("⚠️ TELEGRAM_BOT_TOKEN is not set")

    @staticmethod
    def _parse_chat_ids(chat_ids_str: str) -> List[int]:
        if not chat_ids_str:
            return []
        # Several chat ids separated by commas
        return [int(chat_id.strip()) for chat_id in chat_ids_str.split(",") if chat_id.strip()]

    @property
    def enabled(self) -> bool:
        return bool(self.bot and self.admin_chat_ids)

    async def _broadcast(self, message: str) -> bool:
        if not self.enabled:
            return False

        success_count = 0
        for chat_id in self.admin_chat_ids:
            try:
                await self.bot.send_message(chat_id=chat_id, text=message, parse_mode="HTML")
                success_count += 1
            except TelegramError as e:
                logger.error(f"❌ Failed to notify admin {chat_id}: {e}")

        return success_count > 0

    @staticmethod
    def _format_time(start_time: datetime) -> str:
        return start_time.strftime("%d.%m.%Y %H:%M")

    async def send_booking_notification(self, client_name: str, session_title: str,
                                        start_time: datetime, balance: int) -> bool:
        message = (
            "🎉 <b>New booking</b>\n\n"
            f"🏋️ {session_title}\n"
            f"📅 {self._format_time(start_time)}\n"
            f"👤 {client_name}\n"
            f"🎟 Tickets left: {balance}"
        )
        return await self._broadcast(message)

    async def send_cancellation_notification(self, client_name: str, session_title: str,
                                             start_time: datetime) -> bool:
        message = (
            "❌ <b>Booking cancelled</b>\n\n"
            f"🏋️ {session_title}\n"
            f"📅 {self._format_time(start_time)}\n"
            f"👤 {client_name}"
        )
        return await self._broadcast(message)

    async def send_session_deleted_notification(self, session_title: str, start_time: datetime,
                                                refunded: int) -> bool:
        message = (
            "🗑 <b>Session deleted</b>\n\n"
            f"🏋️ {session_title}\n"
            f"📅 {self._format_time(start_time)}\n"
            f"🎟 Tickets refunded: {refunded}"
        )
        return await self._broadcast(message)


# Global instance
telegram_notifier = TelegramNotifier()
