"""Telegram bot: chat commands that open the web app through a bot auth handshake."""

import json

import structlog
from pymongo.errors import PyMongoError
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update, WebAppInfo
from telegram.constants import ParseMode
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes, MessageHandler, filters

from navigapp.app import App
from navigapp.bot import messages
from navigapp.core.modules.identity.models import TelegramUserData
from navigapp.core.modules.user.models import SubscriptionType
from navigapp.errors import DatabaseError, UserError

logger = structlog.get_logger(__name__)


class NavigappBot:
    """Long-polling bot that calls the auth facade in-process."""

    def __init__(self, app: App, token: str) -> None:
        self._app = app
        self._application = Application.builder().token(token).build()
        self._setup_handlers()

    @property
    def application(self) -> Application:  # type: ignore[type-arg]
        return self._application

    def _setup_handlers(self) -> None:
        application = self._application
        application.add_handler(CommandHandler("start", self.handle_start))
        application.add_handler(CommandHandler("login", self.handle_login))
        application.add_handler(CommandHandler("help", self.handle_help))
        application.add_handler(CallbackQueryHandler(self.handle_help_callback, pattern="^help$"))
        application.add_handler(CallbackQueryHandler(self.handle_pricing_callback, pattern="^pricing$"))
        application.add_handler(MessageHandler(filters.StatusUpdate.WEB_APP_DATA, self.handle_web_app_data))
        # Registered last: commands above win within the same handler group
        application.add_handler(MessageHandler(filters.TEXT, self.handle_unknown))

    async def start(self) -> None:
        await self._application.initialize()
        await self._application.start()
        if self._application.updater:
            await self._application.updater.start_polling(drop_pending_updates=True)
        logger.info("bot_started")

    async def stop(self) -> None:
        if self._application.updater and self._application.updater.running:
            await self._application.updater.stop()
        if self._application.running:
            await self._application.stop()
        await self._application.shutdown()
        logger.info("bot_stopped")

    async def handle_start(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        """First contact: welcome text with a web app button carrying a fresh auth hash."""
        if update.effective_user is None or update.effective_message is None:
            return

        deep_link = await self._initiate(update)
        if deep_link is None:
            await update.effective_message.reply_text(messages.AUTH_FAILED)
            return

        keyboard = InlineKeyboardMarkup(
            [
                [InlineKeyboardButton(messages.OPEN_APP_BUTTON, web_app=WebAppInfo(url=deep_link))],
                [
                    InlineKeyboardButton(messages.HELP_BUTTON, callback_data="help"),
                    InlineKeyboardButton(messages.PRICING_BUTTON, callback_data="pricing"),
                ],
            ]
        )
        await update.effective_message.reply_text(messages.WELCOME, parse_mode=ParseMode.MARKDOWN, reply_markup=keyboard)

    async def handle_login(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        """Returning users get a greeting with their plan, new users a short intro."""
        if update.effective_user is None or update.effective_message is None:
            return

        try:
            existing = await self._app.find_user_by_telegram_id(update.effective_user.id)
        except PyMongoError:
            logger.exception("bot_user_lookup_failed", telegram_id=update.effective_user.id)
            await update.effective_message.reply_text(messages.COMMAND_FAILED.format(command="login"))
            return

        if existing is None:
            text = messages.NEW_USER
        else:
            plan = "💎 Pro" if existing.subscription_type == SubscriptionType.PRO else "🆓 Free"
            text = messages.RETURNING_USER.format(name=existing.first_name or "there", plan=plan)

        deep_link = await self._initiate(update)
        if deep_link is None:
            await update.effective_message.reply_text(messages.AUTH_FAILED)
            return

        keyboard = InlineKeyboardMarkup([[InlineKeyboardButton(messages.OPEN_APP_BUTTON, web_app=WebAppInfo(url=deep_link))]])
        await update.effective_message.reply_text(text, parse_mode=ParseMode.MARKDOWN, reply_markup=keyboard)

    async def handle_help(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message is None:
            return
        await update.effective_message.reply_text(messages.HELP, parse_mode=ParseMode.MARKDOWN)

    async def handle_help_callback(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None:
            return
        await query.answer()
        if update.effective_chat is not None:
            await update.effective_chat.send_message(messages.HELP, parse_mode=ParseMode.MARKDOWN)

    async def handle_pricing_callback(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if query is None:
            return
        await query.answer()
        if update.effective_chat is not None:
            await update.effective_chat.send_message(messages.PRICING_SECTION, parse_mode=ParseMode.MARKDOWN)

    async def handle_web_app_data(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        """Acknowledge events the web app sends back through Telegram.WebApp.sendData."""
        message = update.effective_message
        if message is None or message.web_app_data is None:
            return

        try:
            data = json.loads(message.web_app_data.data)
        except json.JSONDecodeError:
            logger.warning("bot_web_app_data_invalid", chat_id=message.chat_id)
            return
        if not isinstance(data, dict):
            return

        event_type = data.get("type")
        if event_type == "auth_completed":
            await message.reply_text(messages.AUTH_COMPLETED)
        elif event_type == "page_created":
            await message.reply_text(messages.PAGE_CREATED.format(title=data.get("page_title", ""), url=data.get("page_url", "")))

    async def handle_unknown(self, update: Update, _: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message is None:
            return

        deep_link = await self._initiate(update) if update.effective_user else None
        url = deep_link or self._app.config.webapp_url
        keyboard = InlineKeyboardMarkup([[InlineKeyboardButton(messages.OPEN_APP_BUTTON, web_app=WebAppInfo(url=url))]])
        await update.effective_message.reply_text(messages.UNKNOWN_COMMAND, parse_mode=ParseMode.MARKDOWN, reply_markup=keyboard)

    async def _initiate(self, update: Update) -> str | None:
        """Open a handshake for the sender; None when the backend cannot."""
        tg_user = update.effective_user
        if tg_user is None:
            return None
        user_data = TelegramUserData(
            first_name=tg_user.first_name,
            last_name=tg_user.last_name,
            username=tg_user.username,
            language_code=tg_user.language_code,
        )
        try:
            handshake = await self._app.initiate_bot_auth(tg_user.id, user_data)
        except (UserError, DatabaseError, PyMongoError):
            logger.exception("bot_auth_initiation_failed", telegram_id=tg_user.id)
            return None
        return handshake.deep_link_url
