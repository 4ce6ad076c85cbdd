"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from lead_dispatch.core.audit import MemoryAuditSink
from lead_dispatch.core.config import Settings
from lead_dispatch.db import queries
from lead_dispatch.db.database import build_engine, build_session_factory
from lead_dispatch.db.models import Base, CallCenter, Form, Lead, LeadEvent, User
from lead_dispatch.service import LeadEngine


BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """SQLite file per test, so every session sees the same data."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'leads.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        max_open_leads_per_agent=None,
        auto_reassign_on_deactivation=True,
        distribute_unassigned_limit=50,
    )


@pytest.fixture
def lead_engine(session_factory, audit_sink, settings) -> LeadEngine:
    return LeadEngine(session_factory, audit_sink=audit_sink, settings=settings)


class Factory:
    """Creates committed rows, one short session each."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._leads_created = 0

    async def _save(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def call_center(self, method: str = "round_robin", name: str = "Center") -> CallCenter:
        return await self._save(CallCenter(name=name, distribution_method=method))

    async def agent(
        self,
        call_center: Optional[CallCenter],
        name: str = "Agent",
        role: str = "agent",
        is_active: bool = True,
    ) -> User:
        return await self._save(
            User(
                name=name,
                role=role,
                call_center_id=call_center.id if call_center else None,
                is_active=is_active,
            )
        )

    async def form(self, call_center: Optional[CallCenter] = None, name: str = "Contact form") -> Form:
        return await self._save(Form(name=name, call_center_id=call_center.id if call_center else None))

    async def lead(
        self,
        call_center: Optional[CallCenter] = None,
        form: Optional[Form] = None,
        status: str = "pending_email",
        assigned_to: Optional[User] = None,
        email: Optional[str] = None,
    ) -> Lead:
        # Strictly increasing creation times keep "oldest first" deterministic
        self._leads_created += 1
        created_at = BASE_TIME + timedelta(minutes=self._leads_created)
        confirmed = status not in ("pending_email",)

        return await self._save(
            Lead(
                form_id=form.id if form else None,
                call_center_id=call_center.id if call_center else None,
                assigned_to=assigned_to.id if assigned_to else None,
                email=email or f"lead{self._leads_created}@example.com",
                status=status,
                status_entered_at=created_at,
                email_confirmed_at=created_at if confirmed else None,
                created_at=created_at,
                updated_at=created_at,
            )
        )

    async def reload_lead(self, lead_id: int) -> Lead:
        async with self.session_factory() as session:
            return await queries.get_lead(session, lead_id)

    async def reload_user(self, user_id: int) -> User:
        async with self.session_factory() as session:
            return await queries.get_user(session, user_id)

    async def reload_call_center(self, call_center_id: int) -> CallCenter:
        async with self.session_factory() as session:
            return await queries.get_call_center(session, call_center_id)

    async def leads_of(self, agent: User) -> List[Lead]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Lead).where(Lead.assigned_to == agent.id).order_by(Lead.id)
            )
            return list(result.scalars().all())

    async def events_of(self, lead_id: int) -> List[LeadEvent]:
        async with self.session_factory() as session:
            return await queries.lead_history(session, lead_id)


@pytest.fixture
def factory(session_factory) -> Factory:
    return Factory(session_factory)


@pytest_asyncio.fixture
async def client(lead_engine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test engine."""
    from lead_dispatch.main import app, get_lead_engine

    app.dependency_overrides[get_lead_engine] = lambda: lead_engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
