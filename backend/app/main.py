"""
Agent Governance Backend: central authority for tenant-owned AI agents.

ARCHITECTURE:
- Channels (web webhook, Telegram): customer messages in, replies out
- Message pipeline: session -> admission -> prompt -> model -> governor -> settlement
- Credit ledger: tiered daily / monthly / purchased pools with CAS debits
- SQLite DB: source of truth for all state

SAFETY MODEL:
- The governor decides every tool call; the model never executes anything itself
- Supervised tenants approve each action; autonomous tenants can still gate tools
- Pending approvals expire; a human decision executes at most once
"""
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from ai.groq_client import GroqProvider
from app.agent.context import AppContext, build_context
from app.agent.scheduler import GovernanceScheduler
from app.api.routes import approvals, credits, inbound, sessions, tenants, usage
from app.api.routes import settings as settings_routes
from app.core.config import settings
from app.core.rate_limiter import RateLimitMiddleware
from app.db.init_db import init_db
from app.db.session import SessionLocal
from app.telegram.bot import TelegramChannel

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOSTS = [
    "localhost",
    "127.0.0.1",
    "localhost:8000",
    "127.0.0.1:8000",
]


def _build_runtime(app: FastAPI):
    """
    Startup:
    1. Initialize database tables
    2. Build the application context (providers, registry, pipeline, dispatcher)
    3. Start the Telegram channel (if token provided)
    4. Start the governance scheduler (approval expiry, credit grants)
    """
    logger.info("[*] Initializing database...")
    init_db()

    context = build_context(
        SessionLocal,
        {"groq": GroqProvider(api_key=settings.GROQ_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS)},
        settings,
    )
    app.state.context = context

    bot = None
    if settings.TELEGRAM_BOT_TOKEN:
        logger.info("[*] Starting Telegram channel...")
        bot = TelegramChannel(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_TENANT_ID, context)
        context.channel_router.register("telegram", bot)
        bot.start()
    else:
        logger.warning("[WARN] Telegram channel disabled (no token)")

    scheduler = GovernanceScheduler(context, interval_seconds=settings.APPROVAL_SWEEP_INTERVAL_SECONDS)
    scheduler.start()
    logger.info("[OK] Context, channels and scheduler started")
    return context, bot, scheduler


def create_app(context: Optional[AppContext] = None, allowed_hosts: Optional[List[str]] = None) -> FastAPI:
    """
    With a prebuilt context (tests, embedding) the app skips startup work
    and serves that context as-is. The caller owns its lifecycle.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if context is not None:
            app.state.context = context
            yield
            return

        runtime_context, bot, scheduler = _build_runtime(app)
        yield

        try:
            await scheduler.stop()
            if bot is not None:
                bot.stop()
        finally:
            runtime_context.shutdown()
            logger.info("[OK] Shutdown complete")

    app = FastAPI(
        title="Agent Governance API",
        description="Tenant agents, human approvals and credit metering.",
        version="0.1.0",
        lifespan=lifespan,
    )

    # SECURITY: Trust only specific hosts
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts or DEFAULT_ALLOWED_HOSTS)

    # SECURITY: Restrict CORS to specific methods and headers (not wildcards)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "Accept",
            "Origin",
            "X-Actor-Id",
        ],
        max_age=600,
        expose_headers=["Content-Type"],
    )

    # SECURITY: Rate limiting per operator / client IP
    app.add_middleware(
        RateLimitMiddleware,
        requests=settings.RATE_LIMIT_REQUESTS,
        window=settings.RATE_LIMIT_WINDOW_SECONDS,
    )

    @app.middleware("http")
    async def add_security_headers(request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    app.include_router(inbound.router, prefix="/inbound", tags=["inbound"])
    app.include_router(tenants.router, prefix="/tenants", tags=["tenants"])
    app.include_router(settings_routes.router, prefix="/tenants", tags=["agent-config"])
    app.include_router(approvals.router, prefix="/tenants", tags=["approvals"])
    app.include_router(credits.router, prefix="/tenants", tags=["credits"])
    app.include_router(usage.router, prefix="/tenants", tags=["usage"])
    app.include_router(sessions.router, prefix="/tenants", tags=["sessions"])

    @app.get("/health")
    def health():
        return {"status": "ok", "channels": app.state.context.channel_router.channels()}

    return app


app = create_app()
