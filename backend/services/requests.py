"""
Generic bilateral request state machine.

Trade requests and friend requests share one shape: a requester proposes,
exactly one responder answers while the request is pending, and an accepted
answer may trigger side effects. Each flavour is a configured
:class:`BilateralRequestMachine`; only the hooks differ.
"""
from typing import Any, Callable, Optional

import structlog
from supabase import Client

from core.db import fetch_one, utcnow_iso
from core.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from services.realtime import broker

logger = structlog.get_logger(__name__)

PENDING = "pending"

Guard = Callable[[Client, dict, str], None]
Hook = Callable[[Client, dict, str], Any]


class BilateralRequestMachine:
    """
    State machine over one request table.

    Args:
        table: Supabase table holding the requests.
        requester_field: Column with the proposing account.
        responder_field: Column with the only account allowed to answer.
        transitions: Allowed decisions per current status. Statuses with no
            entry are terminal.
        label: Human-readable name used in error messages.
        guard: Optional check run before the status changes; raises to abort.
        on_transition: Optional side effect run after the status changed.
            Its return value is handed back from :meth:`respond`.
    """

    def __init__(
        self,
        table: str,
        *,
        requester_field: str,
        responder_field: str,
        transitions: dict[str, frozenset[str]],
        label: str,
        guard: Optional[Guard] = None,
        on_transition: Optional[Hook] = None,
    ):
        self.table = table
        self.requester_field = requester_field
        self.responder_field = responder_field
        self.transitions = transitions
        self.label = label
        self.guard = guard
        self.on_transition = on_transition

    def participants(self, row: dict) -> tuple[str, str]:
        return row[self.requester_field], row[self.responder_field]

    def insert(self, client: Client, record: dict) -> dict:
        """Create a request in the pending state."""
        now = utcnow_iso()
        data = {**record, "status": PENDING, "created_at": now, "updated_at": now}
        row = fetch_one(client.table(self.table).insert(data), f"create {self.label}")
        if row is None:
            raise StateConflictError(f"Failed to create {self.label}")

        logger.info(
            "Request created",
            table=self.table,
            request_id=row.get("id"),
            requester=record.get(self.requester_field),
            responder=record.get(self.responder_field),
        )
        broker.publish(self.table, self.participants(row), "INSERT")
        return row

    def fetch(self, client: Client, request_id: str) -> dict:
        row = fetch_one(
            client.table(self.table).select("*").eq("id", request_id),
            f"load {self.label}",
        )
        if row is None:
            raise NotFoundError(f"{self.label.capitalize()} not found")
        return row

    def respond(self, client: Client, request_id: str, responder_id: str, decision: str) -> tuple[dict, Any]:
        """
        Answer a pending request.

        Returns:
            The updated row and whatever ``on_transition`` returned.

        Raises:
            NotFoundError: no such request.
            AuthorizationError: responder is not the addressed account.
            ValidationError: decision is not one this machine knows.
            StateConflictError: the request is no longer pending.
        """
        row = self.fetch(client, request_id)

        if row[self.responder_field] != responder_id:
            raise AuthorizationError(f"Only the recipient can respond to this {self.label}")

        known = frozenset().union(*self.transitions.values())
        if decision not in known:
            raise ValidationError(f"'{decision}' is not a valid response")

        current = row["status"]
        if decision not in self.transitions.get(current, frozenset()):
            raise StateConflictError(f"This {self.label} is already {current}")

        if self.guard is not None:
            self.guard(client, row, decision)

        # Conditional on the status we read so a concurrent answer cannot be overwritten
        updated = fetch_one(
            client.table(self.table)
            .update({"status": decision, "updated_at": utcnow_iso()})
            .eq("id", request_id)
            .eq("status", current),
            f"respond to {self.label}",
        )
        if updated is None:
            raise StateConflictError(f"This {self.label} was already answered")

        logger.info(
            "Request answered",
            table=self.table,
            request_id=request_id,
            responder=responder_id,
            decision=decision,
        )
        broker.publish(self.table, self.participants(updated), "UPDATE")

        outcome = None
        if self.on_transition is not None:
            outcome = self.on_transition(client, updated, decision)
        return updated, outcome
