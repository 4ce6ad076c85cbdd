"""
Auto-Distribution Trigger
=========================
Executes the intents produced by the state machine once the change that
produced them has been committed.

For a TriggerDistribution intent:
    1. backfill the call center from the form if the lead has none
    2. stop if the call center distributes manually
    3. inside the call center's critical section, select an agent and assign
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lead_dispatch.core import audit
from lead_dispatch.core.audit import AuditSink
from lead_dispatch.core.errors import LeadDispatchError
from lead_dispatch.core.lead_fsm import TriggerDistribution
from lead_dispatch.core.lead_fsm_db import LeadFSM
from lead_dispatch.core.lead_states import DISTRIBUTABLE_STATUSES, LeadStatus
from lead_dispatch.core.locks import CallCenterLocks
from lead_dispatch.db import queries
from lead_dispatch.db.models import DistributionMethod
from lead_dispatch.distribution.assignment import assign
from lead_dispatch.distribution.engine import DistributionEngine, distribution_method

logger = logging.getLogger(__name__)


class DistributionTrigger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: DistributionEngine,
        locks: CallCenterLocks,
        audit_sink: AuditSink,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.locks = locks
        self.audit_sink = audit_sink

    async def dispatch(self, intents: Iterable) -> List[Optional[int]]:
        """Run intents in order. Returns the agent id chosen for each (or None)."""
        results = []
        for intent in intents:
            if isinstance(intent, TriggerDistribution):
                results.append(await self.auto_distribute(intent.lead_id))
            else:
                raise TypeError(f"Unknown intent {intent!r}")
        return results

    async def auto_distribute(self, lead_id: int) -> Optional[int]:
        call_center_id = await self._prepare(lead_id)
        if call_center_id is None:
            return None

        async with self.locks.hold(call_center_id):
            async with self.session_factory() as session:
                return await self.distribute_and_assign(session, lead_id)

    async def _prepare(self, lead_id: int) -> Optional[int]:
        """Resolve the lead's call center; None when distribution must not run."""
        async with self.session_factory() as session:
            fsm = LeadFSM(session)
            lead = await fsm.load(lead_id)

            if lead.call_center_id is None:
                call_center_id = await self.engine.resolver.resolve(session, lead)
                if call_center_id is None:
                    logger.warning(f"Cannot distribute lead {lead_id}: no call center on the lead or its form")
                    await audit.rollback(session)
                    return None
                # Distribution runs right below, so the resolved intent is not needed
                fsm.resolve_call_center(lead, call_center_id)
                await audit.commit_and_publish(session, self.audit_sink)
                logger.info(f"Lead {lead_id}: call center {call_center_id} taken from form {lead.form_id}")

            call_center = await queries.get_call_center(session, lead.call_center_id)
            if call_center is None:
                logger.warning(f"Cannot distribute lead {lead_id}: call center {lead.call_center_id} not found")
                return None

            if distribution_method(call_center) == DistributionMethod.MANUAL:
                logger.info(f"Skipping automatic distribution of lead {lead_id} (manual mode)")
                return None

            return call_center.id

    async def distribute_and_assign(self, session: AsyncSession, lead_id: int) -> Optional[int]:
        """Select and assign in one transaction. Caller holds the call center's lock."""
        lead = await LeadFSM(session).load(lead_id)

        if lead.assigned_to is not None:
            logger.info(f"Lead {lead_id} already assigned to {lead.assigned_to}, not distributing")
            await audit.rollback(session)
            return None
        if LeadStatus.parse(lead.status) not in DISTRIBUTABLE_STATUSES:
            logger.info(f"Lead {lead_id} is {lead.status}, not distributing")
            await audit.rollback(session)
            return None

        agent = await self.engine.select_agent(session, lead)
        if agent is None:
            await audit.rollback(session)
            return None

        if not await assign(session, lead, agent):
            await audit.rollback(session)
            return None

        await audit.commit_and_publish(session, self.audit_sink)
        return agent.id

    async def sweep_unassigned(self, limit: int) -> Dict[str, int]:
        """Distribute confirmed leads that nobody owns (e.g. no agent existed at confirmation time)."""
        async with self.session_factory() as session:
            lead_ids = await queries.unassigned_distributable_lead_ids(session, limit)

        summary = {"distributed": 0, "failed": 0}
        for lead_id in lead_ids:
            try:
                agent_id = await self.auto_distribute(lead_id)
            except (SQLAlchemyError, LeadDispatchError):
                logger.exception(f"Error distributing lead {lead_id}")
                agent_id = None

            if agent_id is None:
                summary["failed"] += 1
            else:
                summary["distributed"] += 1

        logger.info(f"Unassigned sweep: {summary['distributed']} distributed, {summary['failed']} failed")
        return summary
