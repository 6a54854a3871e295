from app.models.tenant import Tenant
from app.models.agent_config import AgentConfig
from app.models.contact import Contact
from app.models.session import AgentSession, SessionMessage
from app.models.ledger import CreditLedger, CreditTransaction
from app.models.approval import ApprovalRequest
from app.models.booking import Booking
from app.models.notification import Notification

__all__ = [
    "Tenant", "AgentConfig", "Contact", "AgentSession", "SessionMessage",
    "CreditLedger", "CreditTransaction", "ApprovalRequest", "Booking", "Notification",
]
