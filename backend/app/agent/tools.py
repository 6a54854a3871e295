"""
Tool registry: the fixed set of capabilities an agent may request.

Each tool has a name, a credit cost, a pydantic model for its arguments
(used both to declare the tool to the LLM and to validate what comes
back) and an execute() that returns a ToolResult. Tools run only after
the governor (or a human approval) lets them.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.channels.router import ChannelRouter
from app.models.booking import Booking
from app.models.contact import Contact
from app.services.credit_costs import get_tool_credit_cost

logger = logging.getLogger(__name__)

READ_ONLY_PREFIXES = ("list_", "get_", "search_", "query_")


def is_read_only(tool_name: str) -> bool:
    """Naming convention: list_/get_/search_/query_ tools never change state."""
    return (tool_name or "").startswith(READ_ONLY_PREFIXES)


@dataclass
class ToolContext:
    db: Session
    tenant_id: int
    session_id: Optional[int] = None
    channel_router: Optional[ChannelRouter] = None


@dataclass
class ToolResult:
    success: bool
    summary: str
    data: dict = field(default_factory=dict)


class Tool:
    name: str = ""
    description: str = ""
    args_model: type = BaseModel

    @property
    def read_only(self) -> bool:
        return is_read_only(self.name)

    @property
    def credit_cost(self) -> Decimal:
        return get_tool_credit_cost(self.name)

    def declaration(self) -> dict:
        """OpenAI-style function declaration sent to the provider."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }

    def parse_arguments(self, arguments: dict) -> dict:
        """Validate stored/JSON arguments into python values (raises ValidationError)."""
        return self.args_model.model_validate(arguments or {}).model_dump()

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Argument models
# ---------------------------------------------------------------------------

class _Strict(BaseModel):
    model_config = {"extra": "forbid"}


class SearchContactsArgs(_Strict):
    query: str = Field(..., min_length=1, max_length=100, description="Name, phone or email fragment")
    limit: int = Field(5, ge=1, le=20)


class GetContactArgs(_Strict):
    contact_id: int = Field(..., ge=1)


class CreateContactArgs(_Strict):
    name: str = Field(..., min_length=2, max_length=255)
    phone: Optional[str] = Field(None, max_length=64)
    email: Optional[str] = Field(None, max_length=255)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("name too short")
        return v

    @field_validator("email")
    @classmethod
    def check_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("not an email address")
        return v


class CreateBookingArgs(_Strict):
    title: str = Field(..., min_length=2, max_length=255)
    starts_at: datetime = Field(..., description="ISO-8601 start time (UTC)")
    contact_id: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = Field(None, max_length=2000)


class ListBookingsArgs(_Strict):
    contact_id: Optional[int] = Field(None, ge=1)
    limit: int = Field(10, ge=1, le=50)


class SendEmailArgs(_Strict):
    to: str = Field(..., max_length=255)
    subject: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1, max_length=10000)

    @field_validator("to")
    @classmethod
    def check_recipient(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v:
            raise ValueError("not an email address")
        return v


# ---------------------------------------------------------------------------
# Built-in tools
# ---------------------------------------------------------------------------

def _contact_dict(contact: Contact) -> dict:
    return {"id": contact.id, "name": contact.name, "phone": contact.phone, "email": contact.email}


class SearchContactsTool(Tool):
    name = "search_contacts"
    description = "Find CRM contacts by name, phone or email."
    args_model = SearchContactsArgs

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        pattern = f"%{args['query'].strip().lower()}%"
        contacts = (
            ctx.db.query(Contact)
            .filter(
                Contact.tenant_id == ctx.tenant_id,
                or_(
                    func.lower(Contact.name).like(pattern),
                    func.lower(Contact.email).like(pattern),
                    Contact.phone.like(pattern),
                ),
            )
            .order_by(Contact.id)
            .limit(args.get("limit", 5))
            .all()
        )
        return ToolResult(
            success=True,
            summary=f"Found {len(contacts)} contact(s)",
            data={"contacts": [_contact_dict(c) for c in contacts]},
        )


class GetContactTool(Tool):
    name = "get_contact"
    description = "Fetch one CRM contact by id."
    args_model = GetContactArgs

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        contact = (
            ctx.db.query(Contact)
            .filter(Contact.tenant_id == ctx.tenant_id, Contact.id == args["contact_id"])
            .first()
        )
        if not contact:
            return ToolResult(success=False, summary=f"Contact {args['contact_id']} not found")
        return ToolResult(success=True, summary=f"Contact {contact.name}", data=_contact_dict(contact))


class CreateContactTool(Tool):
    name = "create_contact"
    description = "Create a CRM contact."
    args_model = CreateContactArgs

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        contact = Contact(
            tenant_id=ctx.tenant_id,
            name=args["name"],
            phone=args.get("phone"),
            email=args.get("email"),
        )
        ctx.db.add(contact)
        ctx.db.commit()
        logger.info(f"[Tools] Created contact {contact.id} for tenant {ctx.tenant_id}")
        return ToolResult(success=True, summary=f"Created contact {contact.name}", data=_contact_dict(contact))


class CreateBookingTool(Tool):
    name = "create_booking"
    description = "Book an appointment, optionally for a known contact."
    args_model = CreateBookingArgs

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        contact_id = args.get("contact_id")
        if contact_id is not None:
            exists = (
                ctx.db.query(Contact.id)
                .filter(Contact.tenant_id == ctx.tenant_id, Contact.id == contact_id)
                .first()
            )
            if not exists:
                return ToolResult(success=False, summary=f"Contact {contact_id} not found")

        starts_at = args["starts_at"]
        if starts_at.tzinfo is not None:
            starts_at = starts_at.replace(tzinfo=None) - starts_at.utcoffset()

        booking = Booking(
            tenant_id=ctx.tenant_id,
            contact_id=contact_id,
            title=args["title"],
            starts_at=starts_at,
            notes=args.get("notes"),
        )
        ctx.db.add(booking)
        ctx.db.commit()
        logger.info(f"[Tools] Created booking {booking.id} for tenant {ctx.tenant_id}")
        return ToolResult(
            success=True,
            summary=f"Booked '{booking.title}' at {booking.starts_at.isoformat()}",
            data={"booking_id": booking.id, "starts_at": booking.starts_at.isoformat()},
        )


class ListBookingsTool(Tool):
    name = "list_bookings"
    description = "List upcoming bookings, optionally for one contact."
    args_model = ListBookingsArgs

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        query = ctx.db.query(Booking).filter(Booking.tenant_id == ctx.tenant_id)
        if args.get("contact_id") is not None:
            query = query.filter(Booking.contact_id == args["contact_id"])
        bookings = query.order_by(Booking.starts_at).limit(args.get("limit", 10)).all()
        return ToolResult(
            success=True,
            summary=f"{len(bookings)} booking(s)",
            data={
                "bookings": [
                    {"id": b.id, "title": b.title, "starts_at": b.starts_at.isoformat(), "contact_id": b.contact_id}
                    for b in bookings
                ]
            },
        )


class SendEmailTool(Tool):
    name = "send_email"
    description = "Send an email to a customer."
    args_model = SendEmailArgs

    def execute(self, ctx: ToolContext, args: dict) -> ToolResult:
        if ctx.channel_router is None:
            return ToolResult(success=False, summary="No channel router available")
        text = f"Subject: {args['subject']}\n\n{args['body']}"
        delivery = ctx.channel_router.send(ctx.tenant_id, "email", args["to"], text)
        if not delivery.ok:
            return ToolResult(success=False, summary=f"Email to {args['to']} failed: {delivery.error}")
        return ToolResult(success=True, summary=f"Email sent to {args['to']}")


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must have a name")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return sorted(self._tools)

    def argument_models(self) -> Dict[str, type]:
        return {name: tool.args_model for name, tool in self._tools.items()}

    def declarations(self, names: Iterable[str]) -> List[dict]:
        return [self._tools[n].declaration() for n in sorted(set(names)) if n in self._tools]


def build_default_registry() -> ToolRegistry:
    return ToolRegistry(
        [
            SearchContactsTool(),
            GetContactTool(),
            CreateContactTool(),
            CreateBookingTool(),
            ListBookingsTool(),
            SendEmailTool(),
        ]
    )
