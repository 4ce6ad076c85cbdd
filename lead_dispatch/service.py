"""
Lead Engine
===========
Public operations of the distribution and status lifecycle engine.

Every operation opens its own session(s) from the factory, commits what it
changed and publishes audit facts afterwards. Anything that reads or moves
a call center's distribution state runs inside that call center's critical
section (CallCenterLocks). Status transitions of one lead run inside its
own section (LeadLocks). No path holds both at once.
"""

import logging
from contextlib import nullcontext
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lead_dispatch.core import audit
from lead_dispatch.core.audit import AuditAction, AuditFact, AuditSink, LoggingAuditSink
from lead_dispatch.core.config import Settings, get_settings
from lead_dispatch.core.errors import (
    AgentNotFound,
    CallCenterNotFound,
    InvalidDistributionMethod,
    LeadNotFound,
)
from lead_dispatch.core.lead_fsm_db import LeadFSM
from lead_dispatch.core.lead_states import UNTREATED_STATUSES
from lead_dispatch.core.locks import CallCenterLocks, LeadLocks
from lead_dispatch.db import queries
from lead_dispatch.db.models import CallCenter, DistributionMethod, Lead, LeadEvent
from lead_dispatch.distribution.assignment import assign
from lead_dispatch.distribution.engine import DistributionEngine
from lead_dispatch.distribution.reassignment import ReassignmentCoordinator, ReassignmentResult
from lead_dispatch.distribution.resolver import CallCenterResolver
from lead_dispatch.distribution.roster import AgentRoster
from lead_dispatch.distribution.trigger import DistributionTrigger
from lead_dispatch.intake.pipeline import FormSubmission, IntakePipeline

logger = logging.getLogger(__name__)


class LeadEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit_sink: Optional[AuditSink] = None,
        settings: Optional[Settings] = None,
        roster: Optional[AgentRoster] = None,
        resolver: Optional[CallCenterResolver] = None,
        locks: Optional[CallCenterLocks] = None,
        lead_locks: Optional[LeadLocks] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.locks = locks or CallCenterLocks()
        self.lead_locks = lead_locks or LeadLocks()
        self.distribution = DistributionEngine(
            roster=roster,
            resolver=resolver,
            max_open_leads_per_agent=self.settings.max_open_leads_per_agent,
        )
        self.trigger = DistributionTrigger(session_factory, self.distribution, self.locks, self.audit_sink)
        self.reassignment = ReassignmentCoordinator(session_factory, self.distribution, self.locks, self.audit_sink)
        self.intake = IntakePipeline(session_factory)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def submit_lead(self, form_id: int, submission: FormSubmission) -> dict:
        return await self.intake.submit(form_id, submission)

    async def confirm_email(self, lead_id: int) -> Lead:
        """
        Double opt-in confirmation. The first call moves the lead to
        email_confirmed and, once that is committed, runs automatic
        distribution. Later calls change nothing, even concurrent ones.
        """
        async with self.lead_locks.hold(lead_id):
            async with self.session_factory() as session:
                lead, outcome = await LeadFSM(session).confirm_email(lead_id)
                if outcome.changed:
                    await audit.commit_and_publish(session, self.audit_sink)
                else:
                    await audit.rollback(session)

        # Distribution takes the call center lock, so the lead lock is released first
        await self.trigger.dispatch(outcome.intents)
        return await self.get_lead(lead_id)

    async def update_after_call(self, lead_id: int, new_status, comment: Optional[str] = None) -> Lead:
        async with self.lead_locks.hold(lead_id):
            async with self.session_factory() as session:
                lead = await LeadFSM(session).update_after_call(lead_id, new_status, comment)
                await audit.commit_and_publish(session, self.audit_sink)
        return lead

    # ── Distribution ──────────────────────────────────────────────────────

    async def distribute_lead(self, lead_id: int) -> Optional[int]:
        """Which agent would get this lead right now. Nothing is written,
        not even the round robin cursor."""
        lead = await self.get_lead(lead_id)

        call_center_id = lead.call_center_id
        if call_center_id is None:
            async with self.session_factory() as session:
                call_center_id = await self.distribution.resolver.resolve(session, lead)
        if call_center_id is None:
            return None

        async with self.locks.hold(call_center_id):
            async with self.session_factory() as session:
                lead = await queries.get_lead(session, lead_id)
                if lead is None:
                    raise LeadNotFound(lead_id)
                agent = await self.distribution.select_agent(session, lead)
                agent_id = agent.id if agent is not None else None
                await session.rollback()

        return agent_id

    async def assign_to_agent(self, lead_id: int, agent_id: int) -> bool:
        """Manual assignment. False when the agent may not own the lead."""
        async with self.session_factory() as session:
            lead = await queries.get_lead(session, lead_id)
            if lead is None:
                raise LeadNotFound(lead_id)
            if await queries.get_user(session, agent_id) is None:
                raise AgentNotFound(agent_id)

        # A lead without a call center is refused by assign(); no section to enter
        section = self.locks.hold(lead.call_center_id) if lead.call_center_id is not None else nullcontext()
        async with section:
            async with self.session_factory() as session:
                lead = await LeadFSM(session).load(lead_id)
                agent = await queries.get_user(session, agent_id)
                if not await assign(session, lead, agent):
                    await audit.rollback(session)
                    return False
                await audit.commit_and_publish(session, self.audit_sink)
        return True

    async def distribute_unassigned_leads(self, limit: Optional[int] = None) -> dict:
        return await self.trigger.sweep_unassigned(limit or self.settings.distribute_unassigned_limit)

    async def backfill_call_centers(self) -> dict:
        """Copy the form's call center onto leads that have none, then
        distribute the ones that were waiting only for that."""
        async with self.session_factory() as session:
            lead_ids = await queries.lead_ids_missing_call_center(session)

        summary = {"updated": 0, "distributed": 0, "unresolved": 0}
        intents = []

        for lead_id in lead_ids:
            async with self.session_factory() as session:
                fsm = LeadFSM(session)
                lead = await fsm.load(lead_id)
                call_center_id = await self.distribution.resolver.resolve(session, lead)
                if call_center_id is None:
                    summary["unresolved"] += 1
                    await audit.rollback(session)
                    continue

                outcome = fsm.resolve_call_center(lead, call_center_id)
                await audit.commit_and_publish(session, self.audit_sink)
                summary["updated"] += 1
                intents.extend(outcome.intents)

        results = await self.trigger.dispatch(intents)
        summary["distributed"] = sum(1 for agent_id in results if agent_id is not None)

        logger.info(
            f"Call center backfill: {summary['updated']} updated, {summary['distributed']} distributed, "
            f"{summary['unresolved']} unresolved"
        )
        return summary

    # ── Reassignment ──────────────────────────────────────────────────────

    async def reassign_untreated_leads(
        self,
        from_agent_id: int,
        to_agent_id: Optional[int],
        call_center_id: int,
        max_count: Optional[int] = None,
        statuses: Optional[Iterable] = None,
    ) -> ReassignmentResult:
        return await self.reassignment.reassign_untreated(
            from_agent_id, to_agent_id, call_center_id, max_count, statuses
        )

    async def reassign_leads(self, lead_ids: List[int], to_agent_id: int) -> ReassignmentResult:
        async with self.session_factory() as session:
            if await queries.get_user(session, to_agent_id) is None:
                raise AgentNotFound(to_agent_id)
        return await self.reassignment.reassign_leads(lead_ids, to_agent_id)

    # ── Administration ────────────────────────────────────────────────────

    async def set_distribution_method(self, call_center_id: int, method) -> CallCenter:
        try:
            new_method = DistributionMethod(method)
        except ValueError:
            raise InvalidDistributionMethod(method)

        async with self.locks.hold(call_center_id):
            async with self.session_factory() as session:
                call_center = await queries.get_call_center(session, call_center_id, for_update=True)
                if call_center is None:
                    raise CallCenterNotFound(call_center_id)

                old_method = call_center.distribution_method
                if old_method == new_method.value:
                    return call_center

                call_center.distribution_method = new_method.value
                audit.stage(
                    session,
                    AuditFact(
                        action=AuditAction.DISTRIBUTION_METHOD_CHANGED,
                        subject_id=call_center.id,
                        properties={"old_method": old_method, "new_method": new_method.value},
                    ),
                )
                await audit.commit_and_publish(session, self.audit_sink)

        logger.info(f"Call center {call_center_id}: distribution method {old_method} -> {new_method.value}")
        return call_center

    async def deactivate_agent(self, agent_id: int) -> Optional[ReassignmentResult]:
        """
        Take an agent out of the roster. Their untreated leads go back
        through automatic distribution when auto_reassign_on_deactivation
        is on; returns that reassignment's counts, or None if none ran.
        """
        async with self.session_factory() as session:
            agent = await queries.get_user(session, agent_id)
            if agent is None:
                raise AgentNotFound(agent_id)

            if agent.is_active:
                agent.is_active = False
                await session.commit()
                logger.info(f"Agent {agent_id} deactivated")

        if not self.settings.auto_reassign_on_deactivation:
            return None
        if not agent.is_agent or agent.call_center_id is None:
            return None

        return await self.reassignment.reassign_untreated(
            agent.id, None, agent.call_center_id, None, UNTREATED_STATUSES
        )

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_lead(self, lead_id: int) -> Lead:
        async with self.session_factory() as session:
            lead = await queries.get_lead(session, lead_id)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    async def lead_history(self, lead_id: int) -> List[LeadEvent]:
        async with self.session_factory() as session:
            if await queries.get_lead(session, lead_id) is None:
                raise LeadNotFound(lead_id)
            return await queries.lead_history(session, lead_id)
