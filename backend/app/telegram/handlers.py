"""
Telegram update handlers.

Handlers only translate an update into an inbound message and queue it.
They never wait for the turn: the reply is sent by the channel router once
the pipeline has finished, and Telegram's loop stays free meanwhile.
"""
import logging

from telegram import Update
from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)


def build_handlers(app_context, tenant_id: int):
    """Returns (handle_start, handle_text) bound to one tenant's agent."""

    async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat_id = update.effective_chat.id if update.effective_chat else None
        logger.info(f"[Telegram] /start from chat {chat_id}")
        await update.message.reply_text("Hello! Send us a message and our assistant will reply here.")

    async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text or not update.effective_chat:
            return
        chat_id = str(update.effective_chat.id)
        app_context.enqueue_inbound(
            tenant_id,
            "telegram",
            chat_id,
            update.message.text,
            update.message.date,
        )
        logger.debug(f"[Telegram] Queued message from chat {chat_id} for tenant {tenant_id}")

    return handle_start, handle_text
