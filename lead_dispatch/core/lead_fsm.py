"""
Lead State Machine
==================
Pure transition rules. Each function checks first, then mutates the lead,
and returns an Outcome: the transition to write to the history table plus
the side effects (intents) the caller must run after committing.

Nothing here touches the database.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from lead_dispatch.core.errors import InvalidTransition
from lead_dispatch.core.lead_states import (
    DISTRIBUTABLE_STATUSES,
    TRANSITIONS,
    LeadEvent,
    LeadStatus,
)
from lead_dispatch.db.models import as_utc


@dataclass(frozen=True)
class TriggerDistribution:
    """Run automatic distribution for this lead once the change is committed."""
    lead_id: int


@dataclass(frozen=True)
class Transition:
    from_status: LeadStatus
    event: LeadEvent
    to_status: LeadStatus
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Outcome:
    transition: Optional[Transition] = None
    intents: List[TriggerDistribution] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.transition is not None


def current_status(lead) -> LeadStatus:
    status = LeadStatus.parse(lead.status)
    if status is None:
        raise InvalidTransition(lead.id, lead.status, None, "unknown current status")
    return status


def _move(lead, to_status: LeadStatus, now: datetime) -> None:
    if lead.status != to_status.value:
        lead.status = to_status.value
        lead.status_entered_at = now


def confirm_email(lead, now: datetime) -> Outcome:
    """
    Double opt-in confirmation.

    Only the first confirmation moves the lead and asks for distribution;
    any later call is a no-op so a lead is never distributed twice.
    """
    status = current_status(lead)

    if status == LeadStatus.EMAIL_CONFIRMED or lead.email_confirmed_at is not None:
        return Outcome()

    next_status = TRANSITIONS.get((status, LeadEvent.EMAIL_CONFIRMED))
    if next_status is None:
        raise InvalidTransition(lead.id, status.value, LeadStatus.EMAIL_CONFIRMED.value)

    lead.email_confirmed_at = now
    _move(lead, next_status, now)

    return Outcome(
        transition=Transition(status, LeadEvent.EMAIL_CONFIRMED, next_status),
        intents=[TriggerDistribution(lead.id)],
    )


def record_call_outcome(lead, new_status, comment: Optional[str], now: datetime) -> Outcome:
    status = current_status(lead)
    requested = LeadStatus.parse(new_status)

    if requested is None:
        raise InvalidTransition(lead.id, status.value, new_status, "unknown status")
    if not requested.can_be_set_after_call:
        raise InvalidTransition(lead.id, status.value, requested.value, "not a call outcome")
    if status.is_final:
        raise InvalidTransition(lead.id, status.value, requested.value, "lead is closed")
    if status == LeadStatus.PENDING_EMAIL:
        raise InvalidTransition(lead.id, status.value, requested.value, "email not confirmed")

    # called_at never moves backwards
    previous_call = as_utc(lead.called_at)
    lead.called_at = now if previous_call is None or now > previous_call else previous_call
    # An outcome without a note keeps the previous one
    if comment:
        lead.call_comment = comment
    _move(lead, requested, now)

    return Outcome(
        transition=Transition(
            status,
            LeadEvent.CALL_OUTCOME_RECORDED,
            requested,
            {"comment": comment},
        )
    )


def mark_assigned(lead, agent_id: int, now: datetime) -> Outcome:
    """Bind the lead to an agent. A confirmed lead is now ready to be called."""
    status = current_status(lead)
    previous_agent = lead.assigned_to

    next_status = TRANSITIONS.get((status, LeadEvent.AGENT_ASSIGNED), status)
    lead.assigned_to = agent_id
    _move(lead, next_status, now)

    return Outcome(
        transition=Transition(
            status,
            LeadEvent.AGENT_ASSIGNED,
            next_status,
            {"agent_id": agent_id, "previous_agent_id": previous_agent},
        )
    )


def mark_unassigned(lead, reason: str) -> Outcome:
    status = current_status(lead)
    previous_agent = lead.assigned_to
    lead.assigned_to = None

    return Outcome(
        transition=Transition(
            status,
            LeadEvent.AGENT_UNASSIGNED,
            status,
            {"previous_agent_id": previous_agent, "reason": reason},
        )
    )


def resolve_call_center(lead, call_center_id: int) -> Outcome:
    """
    Attach a call center found after the fact. A lead that was already
    confirmed and still has no agent becomes distributable again.
    """
    status = current_status(lead)
    lead.call_center_id = call_center_id

    intents = []
    if status in DISTRIBUTABLE_STATUSES and lead.assigned_to is None:
        intents.append(TriggerDistribution(lead.id))

    return Outcome(
        transition=Transition(
            status,
            LeadEvent.CALL_CENTER_RESOLVED,
            status,
            {"call_center_id": call_center_id},
        ),
        intents=intents,
    )
