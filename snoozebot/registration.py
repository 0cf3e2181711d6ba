from typing import Optional

from telegram import KeyboardButton, ReplyKeyboardMarkup, ReplyKeyboardRemove, Update
from telegram.ext import CommandHandler, ContextTypes, ConversationHandler, MessageHandler, filters

from snoozebot import config
from snoozebot.call_client import CallError
from snoozebot.handlers_trip import main_menu_keyboard


def normalize_phone(raw: str) -> Optional[str]:
    """E.164 form of a Telegram contact number, or None if it can't be one."""
    digits = "".join(ch for ch in raw if ch.isdigit())
    if len(digits) < 8 or len(digits) > 15:
        return None
    return f"+{digits}"


def build_registration_handler(registry, call_client, logger) -> ConversationHandler:
    async def cmd_phone(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        user = update.effective_user
        if not user or not update.message:
            return ConversationHandler.END

        logger.info("PHONE_REG_START user=%s", user.id)
        keyboard = ReplyKeyboardMarkup(
            [[KeyboardButton("📱 Share my phone number", request_contact=True)]],
            resize_keyboard=True,
            one_time_keyboard=True,
        )
        await update.message.reply_text(
            "I need your number to call you when your stop is near. Tap the button below.",
            reply_markup=keyboard,
        )
        return config.REG_CONTACT

    async def reg_contact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        user = update.effective_user
        chat = update.effective_chat
        if not user or not chat or not update.message:
            return config.REG_CONTACT

        contact = update.message.contact
        if not contact:
            await update.message.reply_text("Please use the button to share your contact.")
            return config.REG_CONTACT

        if contact.user_id != user.id:
            await update.message.reply_text("That's not your own contact. Use the button below.")
            return config.REG_CONTACT

        phone = normalize_phone(contact.phone_number or "")
        if phone is None:
            await update.message.reply_text("I couldn't read that number. Try again.")
            return config.REG_CONTACT

        try:
            await call_client.register_phone(user.id, phone)
        except CallError as exc:
            logger.warning("PHONE_REG_FAIL user=%s code=%s error=%s", user.id, exc.code, exc)
            await update.message.reply_text(
                "Temporary connection error, try /phone again later.",
                reply_markup=main_menu_keyboard(),
            )
            return ConversationHandler.END

        traveler = registry.get_or_create(user.id, chat.id)
        traveler.session.phone_registered = True
        logger.info("PHONE_REG_DONE user=%s", user.id)
        await update.message.reply_text(
            "✅ Phone saved. Send /trip to set your stop.",
            reply_markup=main_menu_keyboard(),
        )
        return ConversationHandler.END

    async def cmd_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
        if update.message:
            await update.message.reply_text("Phone registration cancelled.", reply_markup=ReplyKeyboardRemove())
        return ConversationHandler.END

    return ConversationHandler(
        entry_points=[CommandHandler("phone", cmd_phone)],
        states={
            config.REG_CONTACT: [MessageHandler(filters.CONTACT, reg_contact)],
        },
        fallbacks=[CommandHandler("cancel", cmd_cancel)],
        allow_reentry=True,
    )
