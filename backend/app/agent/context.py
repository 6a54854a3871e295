"""
Application context.

Everything the pipeline needs (session factory, config store, providers,
tool registry, channel router, dispatcher) is built once at startup and
passed down explicitly. Nothing here is a module-level global; the FastAPI
app keeps its instance on app.state and tests build their own.
"""
import logging
from dataclasses import dataclass
from concurrent.futures import Future
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ai.provider import LLMProvider
from app.agent.approvals import ApprovalService
from app.agent.dispatcher import SessionDispatcher
from app.agent.invoker import ModelInvoker
from app.agent.pipeline import KnowledgeRetriever, MessagePipeline
from app.agent.tools import ToolRegistry, build_default_registry
from app.channels.router import ChannelRouter, LoggingChannel
from app.services.config_store import ConfigStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    session_factory: Callable[[], Session]
    config_store: ConfigStore
    registry: ToolRegistry
    channel_router: ChannelRouter
    invoker: ModelInvoker
    pipeline: MessagePipeline
    approvals: ApprovalService
    dispatcher: SessionDispatcher

    def enqueue_inbound(
        self,
        tenant_id: int,
        channel: str,
        external_contact_id: str,
        text: str,
        timestamp: Optional[datetime] = None,
    ) -> Future:
        """Queue a message behind earlier ones for the same session key."""
        key = (tenant_id, channel, external_contact_id)
        return self.dispatcher.submit(
            key,
            self.pipeline.process_inbound_message,
            tenant_id,
            channel,
            external_contact_id,
            text,
            timestamp,
        )

    def shutdown(self) -> None:
        self.dispatcher.shutdown(wait=True)
        logger.info("[Context] Dispatcher stopped")


def build_context(
    session_factory: Callable[[], Session],
    providers: Dict[str, LLMProvider],
    settings,
    channel_router: Optional[ChannelRouter] = None,
    registry: Optional[ToolRegistry] = None,
    knowledge_retriever: Optional[KnowledgeRetriever] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> AppContext:
    if channel_router is None:
        channel_router = ChannelRouter()
        channel_router.register("web", LoggingChannel("web"))
        channel_router.register("email", LoggingChannel("email"))
    registry = registry or build_default_registry()
    config_store = ConfigStore(session_factory)

    invoker_kwargs = {"sleep": sleep} if sleep is not None else {}
    invoker = ModelInvoker(
        providers,
        credits_per_usd=settings.CREDITS_PER_USD,
        retry_backoff_seconds=settings.LLM_RETRY_BACKOFF_SECONDS,
        **invoker_kwargs,
    )
    pipeline = MessagePipeline(
        session_factory,
        config_store,
        invoker,
        registry,
        channel_router,
        history_window=settings.HISTORY_WINDOW,
        failure_threshold=settings.TOOL_FAILURE_THRESHOLD,
        knowledge_retriever=knowledge_retriever,
    )
    approvals = ApprovalService(
        session_factory,
        config_store,
        registry,
        channel_router,
        timeout_hours=settings.APPROVAL_TIMEOUT_HOURS,
        failure_threshold=settings.TOOL_FAILURE_THRESHOLD,
    )
    return AppContext(
        session_factory=session_factory,
        config_store=config_store,
        registry=registry,
        channel_router=channel_router,
        invoker=invoker,
        pipeline=pipeline,
        approvals=approvals,
        dispatcher=SessionDispatcher(max_workers=settings.PIPELINE_WORKERS),
    )
