"""
Assignment Operation
====================
The only place that writes Lead.assigned_to to a new agent.

The call-center check, the owner write, the status move and the history row
all happen in the caller's transaction: either everything lands on commit
or nothing does. A refused assignment returns False and leaves the lead as
it was.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.core import audit
from lead_dispatch.core.audit import AuditAction, AuditFact
from lead_dispatch.core.lead_fsm_db import LeadFSM
from lead_dispatch.db.models import Lead, User

logger = logging.getLogger(__name__)


def refusal_reason(lead: Lead, agent: User):
    """Why this agent may not own this lead, or None if it may."""
    if agent.call_center_id is None or agent.call_center_id != lead.call_center_id:
        return "cross_center"
    if not agent.is_agent:
        return "not_an_agent"
    if not agent.is_active:
        return "inactive_agent"
    return None


async def assign(session: AsyncSession, lead: Lead, agent: User) -> bool:
    reason = refusal_reason(lead, agent)
    if reason is not None:
        logger.warning(
            f"Cannot assign lead {lead.id} (call center {lead.call_center_id}) "
            f"to user {agent.id} (call center {agent.call_center_id}): {reason}"
        )
        return False

    outcome = LeadFSM(session).assign(lead, agent.id)
    transition = outcome.transition

    audit.stage(
        session,
        AuditFact(
            action=AuditAction.LEAD_ASSIGNED,
            subject_id=lead.id,
            properties={
                "lead_id": lead.id,
                "agent_id": agent.id,
                "previous_agent_id": transition.payload.get("previous_agent_id"),
                "call_center_id": lead.call_center_id,
                "old_status": transition.from_status.value,
                "new_status": transition.to_status.value,
            },
        ),
    )
    await session.flush()

    logger.info(f"Lead {lead.id} assigned to agent {agent.id} (status {lead.status})")
    return True
