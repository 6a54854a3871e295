"""
Audit logging for governance-critical operations.

Every proposed tool call that needs a human, every human decision, every
expiry and every credit movement is written as one JSON line to the
"audit" logger so it can be shipped to centralized logging.
"""
import logging
import json
from typing import Any, Optional, Dict

from app.core.timeutil import utcnow

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


class AuditLog:
    """Central audit logging for governance events."""

    @staticmethod
    def _emit(log_entry: Dict[str, Any], level: int = logging.INFO) -> None:
        log_entry.setdefault("timestamp", utcnow().isoformat())
        audit_logger.log(level, json.dumps(log_entry, default=str))

    @staticmethod
    def log_approval(
        action: str,  # "requested", "approved", "rejected", "expired", "executed"
        approval_id: int,
        tenant_id: int,
        tool_name: str,
        actor: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """
        Log approval lifecycle events.

        Usage:
            AuditLog.log_approval("requested", 12, tenant_id=1, tool_name="send_email")
            AuditLog.log_approval("approved", 12, tenant_id=1, tool_name="send_email", actor="ops@acme")
        """
        log_entry = {
            "event_type": f"approval.{action}",
            "approval_id": approval_id,
            "tenant_id": tenant_id,
            "tool": tool_name,
            "actor": actor or "system",
        }
        if details:
            log_entry["details"] = details
        AuditLog._emit(log_entry)

    @staticmethod
    def log_credit(
        action: str,  # "debit", "daily_grant", "monthly_grant", "purchase", "debit_refused"
        tenant_id: int,
        amount: Any,
        label: str,
        reference: Optional[str] = None,
        balance_after: Any = None,
    ):
        """
        Log credit ledger movements.

        Usage:
            AuditLog.log_credit("debit", 1, "-3", "agent_message", reference="session:4", balance_after="3")
        """
        log_entry = {
            "event_type": f"credits.{action}",
            "tenant_id": tenant_id,
            "amount": amount,
            "label": label,
        }
        if reference:
            log_entry["reference"] = reference
        if balance_after is not None:
            log_entry["balance_after"] = balance_after
        level = logging.WARNING if action == "debit_refused" else logging.INFO
        AuditLog._emit(log_entry, level)

    @staticmethod
    def log_policy_rejection(
        tenant_id: int,
        session_id: int,
        tool_name: str,
        reason: str,
    ):
        """
        Log tool calls the governor refused outright.

        Repeated refusals for the same tool can point at a prompt-injection
        attempt or a misconfigured agent.
        """
        log_entry = {
            "event_severity": "WARNING",
            "event_type": "governance.rejected",
            "tenant_id": tenant_id,
            "session_id": session_id,
            "tool": tool_name,
            "reason": reason,
        }
        AuditLog._emit(log_entry, logging.WARNING)

    @staticmethod
    def log_session_event(
        event_type: str,  # "handed_off", "resumed", "closed", "reopened"
        tenant_id: int,
        session_id: int,
        actor: Optional[str] = None,
        details: Optional[str] = None,
    ):
        log_entry = {
            "event_type": f"session.{event_type}",
            "tenant_id": tenant_id,
            "session_id": session_id,
            "actor": actor or "system",
        }
        if details:
            log_entry["details"] = details
        AuditLog._emit(log_entry)

    @staticmethod
    def log_config_change(tenant_id: int, actor: str, fields: list):
        """Agent configuration edits (autonomy level changes matter most)."""
        AuditLog._emit({
            "event_type": "config.updated",
            "tenant_id": tenant_id,
            "actor": actor,
            "fields": fields,
        })
