"""Telegram channel adapter using python-telegram-bot."""

import logging
import os
from collections.abc import Iterable

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters

from fuelintel.channels.base import ChannelAdapter, InboundMessage, KeyboardButton, MessageCallback, OutboundMessage

logger = logging.getLogger(__name__)

UNAUTHORIZED_TEXT = "⛔ Acceso denegado.\n\nTu ID de usuario: {user_id}"


class TelegramChannel(ChannelAdapter):
    """Telegram channel adapter.

    Handles:
    - Bot initialization and lifecycle
    - Update conversion (text, commands and button presses)
    - User allowlisting
    - Reply delivery with inline keyboards
    """

    name = "telegram"

    # Telegram maximum message length
    MAX_MESSAGE_LENGTH = 4096

    def __init__(
        self,
        token: str | None = None,
        allowed_users: Iterable[int] | None = None,
        allow_all: bool = True,
    ):
        """Initialize the Telegram channel.

        Args:
            token: Bot token (falls back to TELEGRAM_BOT_TOKEN env var).
            allowed_users: User IDs allowed when allow_all is False.
            allow_all: If True, every user may talk to the bot.

        Raises:
            ValueError: If no token is available.
        """
        resolved_token = token or os.environ.get("TELEGRAM_BOT_TOKEN")
        if not resolved_token:
            raise ValueError("Telegram bot token required (pass token or set TELEGRAM_BOT_TOKEN)")
        self.token: str = resolved_token

        self.allowed_users = set(allowed_users or [])
        self.allow_all = allow_all
        self._app: Application | None = None  # type: ignore[type-arg]
        self._message_callback: MessageCallback | None = None

    async def start(self) -> None:
        """Start the Telegram bot."""
        # Updates from different users are processed concurrently; per-user
        # ordering is enforced by the session lock in the router.
        self._app = Application.builder().token(self.token).concurrent_updates(True).build()

        # Button presses first, so they never reach the text handlers
        self._app.add_handler(CallbackQueryHandler(self._handle_callback_query))
        self._app.add_handler(MessageHandler(filters.COMMAND, self._handle_message))
        self._app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message))

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling()  # type: ignore[union-attr]

        logger.info("Telegram channel started")

    async def stop(self) -> None:
        """Stop the Telegram bot."""
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            self._app = None
            logger.info("Telegram channel stopped")

    def on_message(self, callback: MessageCallback) -> None:
        """Register callback producing replies for incoming messages."""
        self._message_callback = callback

    async def register_commands(self, commands: Iterable[tuple[str, str]]) -> None:
        """Publish the command menu shown by Telegram clients.

        Args:
            commands: (name, description) pairs.
        """
        if not self._app:
            raise RuntimeError("Telegram channel not started")
        bot_commands = [BotCommand(name, description) for name, description in commands]
        await self._app.bot.set_my_commands(bot_commands)
        logger.info(f"Registered {len(bot_commands)} bot commands")

    async def send(self, chat_id: str, message: OutboundMessage) -> None:
        """Send a reply to a Telegram chat.

        Long texts are split at paragraph boundaries when possible; the
        keyboard is attached to the last chunk only.
        """
        if not self._app:
            raise RuntimeError("Telegram channel not started")

        chunks = self._split_message(message.text)
        markup = self._to_markup(message.keyboard)
        for index, chunk in enumerate(chunks):
            is_last = index == len(chunks) - 1
            await self._app.bot.send_message(
                chat_id=int(chat_id),
                text=chunk,
                reply_markup=markup if is_last else None,
            )

    @staticmethod
    def _to_markup(keyboard: list[list[KeyboardButton]] | None) -> InlineKeyboardMarkup | None:
        if not keyboard:
            return None
        return InlineKeyboardMarkup(
            [[InlineKeyboardButton(button.text, callback_data=button.payload) for button in row] for row in keyboard]
        )

    def _split_message(self, text: str) -> list[str]:
        """Split text into chunks that fit Telegram's message limit.

        Tries to break at paragraph boundaries (double newline), falls back
        to single newlines, then hard-splits as a last resort.

        Args:
            text: The full message text.

        Returns:
            List of message chunks, each within MAX_MESSAGE_LENGTH.
        """
        if len(text) <= self.MAX_MESSAGE_LENGTH:
            return [text]

        chunks: list[str] = []
        remaining = text

        while remaining:
            if len(remaining) <= self.MAX_MESSAGE_LENGTH:
                chunks.append(remaining)
                break

            split_at = remaining.rfind("\n\n", 0, self.MAX_MESSAGE_LENGTH)
            if split_at == -1:
                split_at = remaining.rfind("\n", 0, self.MAX_MESSAGE_LENGTH)
            if split_at <= 0:
                split_at = self.MAX_MESSAGE_LENGTH

            chunks.append(remaining[:split_at])
            remaining = remaining[split_at:].lstrip("\n")

        return chunks

    def _is_allowed(self, update: Update) -> bool:
        """Check if the sender is allowed.

        With allow_all the bot is public. Otherwise the user must be on the
        allowlist; an empty allowlist denies everyone.
        """
        if not update.effective_user:
            return False
        if self.allow_all:
            return True
        return update.effective_user.id in self.allowed_users

    def _to_inbound(self, update: Update) -> InboundMessage | None:
        """Convert a Telegram text update to an InboundMessage."""
        if not update.message or not update.effective_user or not update.effective_chat:
            return None

        return InboundMessage(
            user_key=self.build_user_key(update.effective_user.id),
            text=update.message.text or "",
            chat_id=str(update.effective_chat.id),
            channel=self.name,
            metadata={
                "message_id": update.message.message_id,
                "username": update.effective_user.username,
                "first_name": update.effective_user.first_name,
            },
        )

    async def _deliver(self, inbound: InboundMessage) -> None:
        if not self._message_callback:
            logger.warning("Telegram update received before a message callback was registered")
            return

        replies = await self._message_callback(inbound)
        if inbound.chat_id is None:
            return
        for reply in replies:
            await self.send(inbound.chat_id, reply)

    async def _send_unauthorized_response(self, update: Update) -> None:
        """Tell a blocked user their ID so an operator can allowlist it."""
        if not update.effective_user or not update.effective_chat:
            return
        user_id = update.effective_user.id
        logger.warning(f"Blocked Telegram user {user_id}")
        if self._app:
            await self._app.bot.send_message(
                chat_id=update.effective_chat.id,
                text=UNAUTHORIZED_TEXT.format(user_id=user_id),
            )

    async def _handle_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle incoming text messages and commands."""
        if not self._is_allowed(update):
            await self._send_unauthorized_response(update)
            return

        inbound = self._to_inbound(update)
        if inbound:
            await self._deliver(inbound)

    async def _handle_callback_query(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle inline keyboard button presses."""
        query = update.callback_query
        if not query or not query.data:
            return

        await query.answer()  # Acknowledge the button press

        if not self._is_allowed(update):
            await self._send_unauthorized_response(update)
            return
        if not update.effective_user or not update.effective_chat:
            return

        inbound = InboundMessage(
            user_key=self.build_user_key(update.effective_user.id),
            callback_payload=query.data,
            chat_id=str(update.effective_chat.id),
            channel=self.name,
            metadata={
                "username": update.effective_user.username,
                "first_name": update.effective_user.first_name,
            },
        )
        await self._deliver(inbound)
