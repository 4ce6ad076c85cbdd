"""
Queries
=======
Every read/write the engine needs, in one place, so the distribution code
never leans on implicit ORM relationship loading.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.core.lead_states import DISTRIBUTABLE_STATUSES, UNTREATED_STATUSES, status_values
from lead_dispatch.db.models import CallCenter, DistributionMethod, Form, Lead, LeadEvent, User


async def get_lead(session: AsyncSession, lead_id: int, for_update: bool = False) -> Optional[Lead]:
    query = select(Lead).where(Lead.id == lead_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_call_center(
    session: AsyncSession, call_center_id: int, for_update: bool = False
) -> Optional[CallCenter]:
    query = select(CallCenter).where(CallCenter.id == call_center_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_form(session: AsyncSession, form_id: int) -> Optional[Form]:
    result = await session.execute(select(Form).where(Form.id == form_id))
    return result.scalar_one_or_none()


async def open_lead_counts(
    session: AsyncSession,
    call_center_id: int,
    agent_ids: Iterable[int],
) -> Dict[int, int]:
    """Untreated leads per agent in one call center. Agents with none map to 0."""
    agent_ids = list(agent_ids)
    if not agent_ids:
        return {}

    result = await session.execute(
        select(Lead.assigned_to, func.count(Lead.id))
        .where(Lead.call_center_id == call_center_id)
        .where(Lead.assigned_to.in_(agent_ids))
        .where(Lead.status.in_(status_values(UNTREATED_STATUSES)))
        .group_by(Lead.assigned_to)
    )
    counts = {agent_id: 0 for agent_id in agent_ids}
    for agent_id, count in result.all():
        counts[agent_id] = count
    return counts


async def untreated_lead_ids(
    session: AsyncSession,
    agent_id: int,
    call_center_id: int,
    statuses: Iterable,
    limit: Optional[int] = None,
) -> List[int]:
    """An agent's leads in the given statuses, oldest first."""
    query = (
        select(Lead.id)
        .where(Lead.assigned_to == agent_id)
        .where(Lead.call_center_id == call_center_id)
        .where(Lead.status.in_(status_values(statuses)))
        .order_by(Lead.created_at, Lead.id)
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def unassigned_distributable_lead_ids(session: AsyncSession, limit: int) -> List[int]:
    """Confirmed leads nobody owns yet, in call centers that distribute automatically."""
    result = await session.execute(
        select(Lead.id)
        .join(CallCenter, CallCenter.id == Lead.call_center_id)
        .where(Lead.assigned_to.is_(None))
        .where(Lead.status.in_(status_values(DISTRIBUTABLE_STATUSES)))
        .where(CallCenter.distribution_method != DistributionMethod.MANUAL.value)
        .order_by(Lead.created_at, Lead.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def lead_ids_missing_call_center(session: AsyncSession) -> List[int]:
    result = await session.execute(
        select(Lead.id).where(Lead.call_center_id.is_(None)).order_by(Lead.id)
    )
    return list(result.scalars().all())


async def lead_history(session: AsyncSession, lead_id: int) -> List[LeadEvent]:
    result = await session.execute(
        select(LeadEvent)
        .where(LeadEvent.lead_id == lead_id)
        .order_by(LeadEvent.occurred_at)
    )
    return list(result.scalars().all())
