"""
Telegram channel: inbound polling bot + outbound provider for the router.

The bot runs its own asyncio loop in a daemon thread (python-telegram-bot
owns that loop). Inbound text is handed to the per-session dispatcher and
the handler returns immediately; the reply comes back later through the
channel router, which calls send() from a pipeline worker thread.
"""
import asyncio
import concurrent.futures
import logging
import threading
from typing import Optional

from telegram import error
from telegram.ext import Application, CommandHandler, MessageHandler, filters

from app.channels.router import DeliveryResult
from app.telegram.handlers import build_handlers

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 15


async def _start_polling_with_retry(app: Application, max_retries: int = 3, initial_backoff: int = 2) -> bool:
    for attempt in range(max_retries):
        try:
            logger.info(f"[Telegram] Starting polling (attempt {attempt + 1}/{max_retries})...")
            await app.updater.start_polling(drop_pending_updates=True)
            logger.info("[Telegram] Polling started")
            return True
        except error.Conflict as e:
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(f"[Telegram] Conflict detected: {e}. Retrying in {backoff}s...")
                await asyncio.sleep(backoff)
            else:
                logger.error(f"[Telegram] Failed after {max_retries} retries. Bot disabled. Error: {e}")
                return False
    return False


class TelegramChannel:
    """One bot, one tenant. Chat ids are the external contact ids."""

    def __init__(self, token: str, tenant_id: int, app_context):
        self.token = token
        self.tenant_id = tenant_id
        self.app_context = app_context
        self._application: Optional[Application] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    def _build_application(self) -> Application:
        application = Application.builder().token(self.token).build()
        handle_start, handle_text = build_handlers(self.app_context, self.tenant_id)
        application.add_handler(CommandHandler("start", handle_start))
        application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))
        return application

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            self._application = self._build_application()
            loop.run_until_complete(self._application.initialize())
            loop.run_until_complete(self._application.start())
            if loop.run_until_complete(_start_polling_with_retry(self._application)):
                self._ready.set()
                loop.run_forever()
        except error.TelegramError as e:
            logger.error(f"[Telegram] Bot error: {e}")
        finally:
            self._ready.clear()
            if self._application is not None:
                if self._application.updater and self._application.updater.running:
                    loop.run_until_complete(self._application.updater.stop())
                if self._application.running:
                    loop.run_until_complete(self._application.stop())
                loop.run_until_complete(self._application.shutdown())
            loop.close()
            logger.info("[Telegram] Bot stopped")

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="telegram-bot", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 10) -> None:
        """Called on FastAPI shutdown."""
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def send(self, tenant_id: int, external_contact_id: str, text: str) -> DeliveryResult:
        if tenant_id != self.tenant_id:
            return DeliveryResult(ok=False, error=f"telegram bot is bound to tenant {self.tenant_id}")
        if not self._ready.is_set() or self._application is None or self._loop is None:
            return DeliveryResult(ok=False, error="telegram bot not running")

        future = asyncio.run_coroutine_threadsafe(
            self._application.bot.send_message(chat_id=int(external_contact_id), text=text),
            self._loop,
        )
        try:
            future.result(timeout=SEND_TIMEOUT_SECONDS)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.warning(f"[Telegram] Send to chat {external_contact_id} timed out after {SEND_TIMEOUT_SECONDS}s")
            return DeliveryResult(ok=False, error="telegram send timed out")
        except (error.TelegramError, ValueError) as e:
            return DeliveryResult(ok=False, error=str(e))
        return DeliveryResult(ok=True)
