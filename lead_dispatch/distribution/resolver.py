"""Find the call center a lead belongs to when the lead row has none."""

from typing import Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.db import queries
from lead_dispatch.db.models import Lead


class CallCenterResolver(Protocol):
    async def resolve(self, session: AsyncSession, lead: Lead) -> Optional[int]:
        ...


class FormCallCenterResolver:
    """The call center configured on the form the lead was submitted through."""

    async def resolve(self, session: AsyncSession, lead: Lead) -> Optional[int]:
        if lead.call_center_id is not None:
            return lead.call_center_id
        if lead.form_id is None:
            return None

        form = await queries.get_form(session, lead.form_id)
        if form is None:
            return None
        return form.call_center_id
