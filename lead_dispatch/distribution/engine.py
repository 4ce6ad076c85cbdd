"""
Distribution Engine
===================
Selects ONE agent for ONE lead according to the call center's method:

    manual       never selects, a human assigns
    round_robin  next agent after the call center's persisted cursor
    weighted     agent with the fewest untreated leads, lowest id on ties

Selection never changes the lead. Round robin does move the call center's
cursor in the caller's session, so callers must hold the call center's
critical section and commit (or roll back) together with the assignment.
"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.db import queries
from lead_dispatch.db.models import CallCenter, DistributionMethod, Lead, User
from lead_dispatch.distribution.resolver import CallCenterResolver, FormCallCenterResolver
from lead_dispatch.distribution.roster import AgentRoster

logger = logging.getLogger(__name__)


def distribution_method(call_center: CallCenter) -> DistributionMethod:
    try:
        return DistributionMethod(call_center.distribution_method)
    except ValueError:
        logger.warning(
            f"Call center {call_center.id} has unknown distribution method "
            f"{call_center.distribution_method!r}, using round robin"
        )
        return DistributionMethod.ROUND_ROBIN


def pick_round_robin(call_center: CallCenter, agents: List[User]) -> User:
    """Next agent after the cursor. The roster may have changed size since the
    last pick, so the index is always taken modulo the current length."""
    cursor = call_center.round_robin_cursor
    if cursor is None:
        cursor = -1
    index = (cursor + 1) % len(agents)
    call_center.round_robin_cursor = index
    return agents[index]


def pick_least_loaded(agents: List[User], counts: Dict[int, int]) -> User:
    return min(agents, key=lambda agent: (counts.get(agent.id, 0), agent.id))


class DistributionEngine:
    def __init__(
        self,
        roster: Optional[AgentRoster] = None,
        resolver: Optional[CallCenterResolver] = None,
        max_open_leads_per_agent: Optional[int] = None,
    ):
        self.roster = roster or AgentRoster()
        self.resolver = resolver or FormCallCenterResolver()
        self.max_open_leads_per_agent = max_open_leads_per_agent

    async def select_agent(
        self,
        session: AsyncSession,
        lead: Lead,
        exclude: Iterable[int] = (),
    ) -> Optional[User]:
        """Return the agent that should receive the lead, or None when nobody can."""
        call_center_id = lead.call_center_id
        if call_center_id is None:
            call_center_id = await self.resolver.resolve(session, lead)
        if call_center_id is None:
            logger.warning(f"Cannot distribute lead {lead.id}: no call center associated")
            return None

        call_center = await queries.get_call_center(session, call_center_id, for_update=True)
        if call_center is None:
            logger.warning(f"Cannot distribute lead {lead.id}: call center {call_center_id} not found")
            return None

        method = distribution_method(call_center)
        if method == DistributionMethod.MANUAL:
            logger.info(f"Lead {lead.id}: call center {call_center_id} distributes manually")
            return None

        agents = await self.roster.eligible_agents(session, call_center_id, exclude=exclude)

        counts: Dict[int, int] = {}
        if agents and (method == DistributionMethod.WEIGHTED or self.max_open_leads_per_agent):
            counts = await queries.open_lead_counts(session, call_center_id, [a.id for a in agents])

        if self.max_open_leads_per_agent:
            agents = [a for a in agents if counts[a.id] < self.max_open_leads_per_agent]

        if not agents:
            logger.warning(f"Cannot distribute lead {lead.id}: no eligible agent in call center {call_center_id}")
            return None

        if method == DistributionMethod.WEIGHTED:
            agent = pick_least_loaded(agents, counts)
        else:
            agent = pick_round_robin(call_center, agents)

        logger.info(
            f"Lead {lead.id}: {method.value} selected agent {agent.id} "
            f"among {[a.id for a in agents]}"
        )
        return agent
