"""
Roster Provider
Who can receive leads in a call center right now
"""

from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.db.models import User, UserRole


class AgentRoster:
    """
    Eligible = role agent, active, belonging to the call center.
    Ordered by id: round robin depends on a stable order.
    An empty list means "cannot distribute now", never an error.
    """

    async def eligible_agents(
        self,
        session: AsyncSession,
        call_center_id: int,
        exclude: Iterable[int] = (),
    ) -> List[User]:
        query = (
            select(User)
            .where(User.call_center_id == call_center_id)
            .where(User.role == UserRole.AGENT.value)
            .where(User.is_active.is_(True))
            .order_by(User.id)
        )
        excluded = [agent_id for agent_id in exclude if agent_id is not None]
        if excluded:
            query = query.where(User.id.not_in(excluded))

        result = await session.execute(query)
        return list(result.scalars().all())
