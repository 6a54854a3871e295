"""Application configuration with security-first defaults.

Environment variables override all defaults.
CRITICAL: OPERATOR_API_KEY must be set in .env - will fail fast if missing in production.
"""

import os
from pathlib import Path
from typing import List


from dotenv import load_dotenv

# Load .env for local development; real environment variables win
_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./governance.db")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"

    # Operator API key - CRITICAL (guards approve/reject and ledger top-ups)
    OPERATOR_API_KEY: str = os.getenv("OPERATOR_API_KEY", "")
    if not OPERATOR_API_KEY:
        if ENVIRONMENT == "production":
            raise ValueError(
                "⛔ CRITICAL: OPERATOR_API_KEY must be set in production environment. "
                "Generate with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        import warnings
        warnings.warn(
            "⚠️  OPERATOR_API_KEY not set in environment. Using development default. "
            "CHANGE THIS BEFORE PRODUCTION.",
            RuntimeWarning
        )
        OPERATOR_API_KEY = "development-only-operator-key"

    # CORS (Restrictive - specific origins only, no wildcards)
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ).split(",")
        if origin.strip()
    ]

    # Channels (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    # Tenant whose agent answers the Telegram bot
    TELEGRAM_TENANT_ID: int = int(os.getenv("TELEGRAM_TENANT_ID", "1"))

    # LLM provider (Must be set via .env, never in code)
    GROQ_API_KEY: str = os.getenv("GROQ_API_KEY", "")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
    LLM_RETRY_BACKOFF_SECONDS: float = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "1.0"))
    # Provider-reported USD cost is converted to credits at this rate
    CREDITS_PER_USD: float = float(os.getenv("CREDITS_PER_USD", "100"))

    # HTTP rate limiting
    RATE_LIMIT_REQUESTS: int = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
    RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

    # Pipeline
    HISTORY_WINDOW: int = int(os.getenv("HISTORY_WINDOW", "20"))
    PIPELINE_WORKERS: int = int(os.getenv("PIPELINE_WORKERS", "8"))
    TOOL_FAILURE_THRESHOLD: int = int(os.getenv("TOOL_FAILURE_THRESHOLD", "3"))

    # Human-in-the-loop approvals
    APPROVAL_TIMEOUT_HOURS: int = int(os.getenv("APPROVAL_TIMEOUT_HOURS", "24"))
    APPROVAL_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("APPROVAL_SWEEP_INTERVAL_SECONDS", "3600"))

    # Credit grants for newly provisioned ledgers
    DEFAULT_DAILY_CREDITS: int = int(os.getenv("DEFAULT_DAILY_CREDITS", "5"))
    DEFAULT_MONTHLY_CREDITS: int = int(os.getenv("DEFAULT_MONTHLY_CREDITS", "0"))


settings = Settings()
