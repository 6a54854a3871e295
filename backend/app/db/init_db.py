"""Create all tables. Run on app startup."""
import logging
from typing import Optional

from sqlalchemy.engine import Engine

from app.db.base import Base
from app.db.session import engine as default_engine
from app import models  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(engine: Optional[Engine] = None) -> None:
    bind = engine or default_engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"[OK] Database initialized ({len(Base.metadata.tables)} tables)")
