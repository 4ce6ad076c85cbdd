"""
Database-Backed FSM
===================
Same transition rules as lead_fsm, applied to a row-locked lead.
Every transition appends to lead_events in the caller's transaction;
the caller decides when to commit.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.core import audit, lead_fsm
from lead_dispatch.core.audit import AuditAction, AuditFact
from lead_dispatch.core.errors import LeadNotFound
from lead_dispatch.db import queries
from lead_dispatch.db.models import Lead as LeadModel, LeadEvent as EventModel, utcnow

logger = logging.getLogger(__name__)


class LeadFSM:
    """Applies lead_fsm rules to persisted leads."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load(self, lead_id: int) -> LeadModel:
        lead = await queries.get_lead(self.session, lead_id, for_update=True)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def record(self, lead: LeadModel, outcome: lead_fsm.Outcome, now=None) -> None:
        """Append the outcome's transition to the immutable history."""
        if not outcome.changed:
            return
        now = now or utcnow()
        transition = outcome.transition
        self.session.add(
            EventModel(
                lead_id=lead.id,
                from_status=transition.from_status.value,
                event=transition.event.value,
                to_status=transition.to_status.value,
                payload=transition.payload,
                occurred_at=now,
            )
        )
        lead.updated_at = now
        logger.info(
            f"Lead {lead.id}: {transition.from_status.value} + {transition.event.value} "
            f"-> {transition.to_status.value}"
        )

    async def confirm_email(self, lead_id: int) -> Tuple[LeadModel, lead_fsm.Outcome]:
        lead = await self.load(lead_id)
        now = utcnow()
        outcome = lead_fsm.confirm_email(lead, now)

        if outcome.changed:
            self.record(lead, outcome, now)
            audit.stage(self.session, _status_fact(lead, outcome))
        else:
            logger.info(f"Lead {lead_id}: email already confirmed, nothing to do")

        return lead, outcome

    async def update_after_call(self, lead_id: int, new_status, comment: Optional[str]) -> LeadModel:
        lead = await self.load(lead_id)
        now = utcnow()
        outcome = lead_fsm.record_call_outcome(lead, new_status, comment, now)

        self.record(lead, outcome, now)
        audit.stage(self.session, _status_fact(lead, outcome, comment=comment))
        return lead

    def resolve_call_center(self, lead: LeadModel, call_center_id: int) -> lead_fsm.Outcome:
        outcome = lead_fsm.resolve_call_center(lead, call_center_id)
        self.record(lead, outcome)
        return outcome

    def assign(self, lead: LeadModel, agent_id: int) -> lead_fsm.Outcome:
        outcome = lead_fsm.mark_assigned(lead, agent_id, utcnow())
        self.record(lead, outcome)
        return outcome

    def unassign(self, lead: LeadModel, reason: str) -> lead_fsm.Outcome:
        outcome = lead_fsm.mark_unassigned(lead, reason)
        self.record(lead, outcome)
        return outcome


def _status_fact(lead: LeadModel, outcome: lead_fsm.Outcome, **extra) -> AuditFact:
    return AuditFact(
        action=AuditAction.LEAD_STATUS_UPDATED,
        subject_id=lead.id,
        properties={
            "lead_id": lead.id,
            "old_status": outcome.transition.from_status.value,
            "new_status": outcome.transition.to_status.value,
            **extra,
        },
    )
