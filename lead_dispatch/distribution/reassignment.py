"""
Reassignment Coordinator
========================
Moves a bounded set of one agent's untreated leads to another agent, or
back through automatic distribution.

Each lead is its own atomic unit (own transaction, own pass through the
call center's critical section). One lead failing never stops the batch;
it is counted and the next lead is processed. The returned counts only
ever reflect writes that were committed.
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lead_dispatch.core import audit
from lead_dispatch.core.audit import AuditSink
from lead_dispatch.core.errors import InvalidReassignment, LeadDispatchError
from lead_dispatch.core.lead_fsm_db import LeadFSM
from lead_dispatch.core.lead_states import UNTREATED_STATUSES, LeadStatus
from lead_dispatch.core.locks import CallCenterLocks
from lead_dispatch.db import queries
from lead_dispatch.distribution.assignment import assign
from lead_dispatch.distribution.engine import DistributionEngine

logger = logging.getLogger(__name__)


class LeadOutcome(str, Enum):
    REASSIGNED = "reassigned"
    FAILED = "failed"
    UNASSIGNED = "unassigned"


@dataclass
class ReassignmentResult:
    reassigned: int = 0
    failed: int = 0
    unassigned: int = 0

    def count(self, outcome: LeadOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def total(self) -> int:
        return self.reassigned + self.failed + self.unassigned

    def as_dict(self) -> dict:
        return asdict(self)


def validate_statuses(statuses: Optional[Iterable]) -> frozenset:
    """None means every untreated status; anything else must be a non-empty subset of it."""
    if statuses is None:
        return UNTREATED_STATUSES

    parsed = set()
    for value in statuses:
        status = LeadStatus.parse(value)
        if status is None or not status.is_untreated:
            raise InvalidReassignment(f"{value!r} is not an untreated status")
        parsed.add(status)

    if not parsed:
        raise InvalidReassignment("At least one status must be selected")
    return frozenset(parsed)


class ReassignmentCoordinator:
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

    async def reassign_untreated(
        self,
        from_agent_id: int,
        to_agent_id: Optional[int],
        call_center_id: int,
        max_count: Optional[int] = None,
        statuses: Optional[Iterable] = None,
    ) -> ReassignmentResult:
        """
        to_agent_id=None means "automatic": each lead goes back through the
        distribution engine (never to from_agent). A lead for which no agent
        is found is detached from from_agent and counted as unassigned.
        """
        wanted = validate_statuses(statuses)
        if max_count is not None and max_count < 1:
            raise InvalidReassignment("max_count must be at least 1")
        if to_agent_id is not None and to_agent_id == from_agent_id:
            raise InvalidReassignment("Source and destination agent are the same")

        async with self.session_factory() as session:
            lead_ids = await queries.untreated_lead_ids(
                session, from_agent_id, call_center_id, wanted, limit=max_count
            )

        result = ReassignmentResult()
        if not lead_ids:
            logger.info(f"No untreated leads to reassign for agent {from_agent_id}")
            return result

        logger.info(
            f"Reassigning {len(lead_ids)} lead(s) from agent {from_agent_id} to "
            f"{to_agent_id if to_agent_id is not None else 'automatic distribution'}"
        )

        for lead_id in lead_ids:
            async with self.locks.hold(call_center_id):
                outcome = await self._reassign_one(lead_id, from_agent_id, to_agent_id, call_center_id, wanted)
            result.count(outcome)

        logger.info(
            f"Reassignment from agent {from_agent_id} done ({result.total} lead(s)): {result.reassigned} reassigned, "
            f"{result.failed} failed, {result.unassigned} unassigned"
        )
        return result

    async def _reassign_one(
        self,
        lead_id: int,
        from_agent_id: int,
        to_agent_id: Optional[int],
        call_center_id: int,
        statuses: frozenset,
    ) -> LeadOutcome:
        async with self.session_factory() as session:
            try:
                lead = await queries.get_lead(session, lead_id, for_update=True)
                if (
                    lead is None
                    or lead.assigned_to != from_agent_id
                    or lead.call_center_id != call_center_id
                    or LeadStatus.parse(lead.status) not in statuses
                ):
                    logger.warning(f"Lead {lead_id} changed since it was selected, skipping")
                    await audit.rollback(session)
                    return LeadOutcome.FAILED

                if to_agent_id is not None:
                    agent = await queries.get_user(session, to_agent_id)
                    if agent is None or agent.call_center_id != call_center_id:
                        logger.warning(f"Agent {to_agent_id} is not part of call center {call_center_id}")
                        await audit.rollback(session)
                        return LeadOutcome.FAILED
                else:
                    agent = await self.engine.select_agent(session, lead, exclude=[from_agent_id])
                    if agent is None:
                        LeadFSM(session).unassign(lead, reason="no_eligible_agent")
                        await audit.commit_and_publish(session, self.audit_sink)
                        logger.warning(f"Lead {lead_id} left unassigned: no other eligible agent")
                        return LeadOutcome.UNASSIGNED

                if not await assign(session, lead, agent):
                    await audit.rollback(session)
                    return LeadOutcome.FAILED

                await audit.commit_and_publish(session, self.audit_sink)
                logger.info(f"Lead {lead_id} reassigned from agent {from_agent_id} to agent {agent.id}")
                return LeadOutcome.REASSIGNED

            except (SQLAlchemyError, LeadDispatchError):
                logger.exception(f"Error reassigning lead {lead_id}")
                await audit.rollback(session)
                return LeadOutcome.FAILED

    async def reassign_leads(self, lead_ids: List[int], to_agent_id: int) -> ReassignmentResult:
        """Hand explicit leads to one agent, each through the assignment operation."""
        result = ReassignmentResult()

        for lead_id in lead_ids:
            async with self.session_factory() as session:
                lead = await queries.get_lead(session, lead_id)
            if lead is None or lead.call_center_id is None:
                logger.warning(f"Cannot reassign lead {lead_id}: missing lead or call center")
                result.count(LeadOutcome.FAILED)
                continue

            async with self.locks.hold(lead.call_center_id):
                outcome = await self._assign_one(lead_id, to_agent_id)
            result.count(outcome)

        return result

    async def _assign_one(self, lead_id: int, to_agent_id: int) -> LeadOutcome:
        async with self.session_factory() as session:
            try:
                lead = await queries.get_lead(session, lead_id, for_update=True)
                agent = await queries.get_user(session, to_agent_id)
                if lead is None or agent is None or not await assign(session, lead, agent):
                    await audit.rollback(session)
                    return LeadOutcome.FAILED

                await audit.commit_and_publish(session, self.audit_sink)
                return LeadOutcome.REASSIGNED

            except (SQLAlchemyError, LeadDispatchError):
                logger.exception(f"Error reassigning lead {lead_id}")
                await audit.rollback(session)
                return LeadOutcome.FAILED
