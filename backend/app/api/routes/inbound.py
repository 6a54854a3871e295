"""
Inbound webhook: channel collaborators post customer messages here.

Fire-and-forget: the message is queued behind earlier messages for the
same session and the call returns 202 at once. The reply goes out through
the channel router when the turn completes.
"""
import logging

from fastapi import APIRouter, Depends, status

from app.agent.context import AppContext
from app.api.deps import Operator, get_context, get_operator
from app.schemas.inbound import InboundAccepted, InboundMessage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=InboundAccepted, status_code=status.HTTP_202_ACCEPTED)
def receive_inbound(
    message: InboundMessage,
    context: AppContext = Depends(get_context),
    operator: Operator = Depends(get_operator),
):
    context.enqueue_inbound(
        message.tenant_id,
        message.channel,
        message.external_contact_id,
        message.text,
        message.timestamp,
    )
    logger.info(
        f"[Inbound] Queued message for ({message.tenant_id}, {message.channel}, "
        f"{message.external_contact_id}) via {operator.actor_id}"
    )
    return InboundAccepted(queued=True)
