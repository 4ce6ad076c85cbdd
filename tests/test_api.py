"""API endpoint tests."""

import pytest
from httpx import AsyncClient


class TestHealthEndpoints:

    @pytest.mark.asyncio
    async def test_root(self, client: AsyncClient):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestLeadLifecycle:

    @pytest.mark.asyncio
    async def test_submit_confirm_call(self, client: AsyncClient, factory):
        center = await factory.call_center()
        agent = await factory.agent(center, "A")
        form = await factory.form(center)

        response = await client.post(f"/forms/{form.id}/leads", json={"email": "lead@example.com"})
        assert response.status_code == 200
        assert response.json()["status"] == "created"
        lead_id = response.json()["lead_id"]

        response = await client.post(f"/leads/{lead_id}/confirm-email")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending_call"
        assert data["status_label"] == "In call queue"
        assert data["assigned_to"] == agent.id
        assert data["email_confirmed_at"] is not None

        response = await client.post(
            f"/leads/{lead_id}/call-outcome",
            json={"status": "quote_sent", "comment": "sent by mail"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "quote_sent"
        assert response.json()["call_comment"] == "sent by mail"

        response = await client.get(f"/leads/{lead_id}/history")
        assert response.status_code == 200
        history = response.json()
        assert history["current_status"] == "quote_sent"
        assert [e["event"] for e in history["events"]] == [
            "LEAD_CREATED",
            "EMAIL_CONFIRMED",
            "AGENT_ASSIGNED",
            "CALL_OUTCOME_RECORDED",
        ]

    @pytest.mark.asyncio
    async def test_invalid_email_is_rejected(self, client: AsyncClient, factory):
        form = await factory.form(None)

        response = await client.post(f"/forms/{form.id}/leads", json={"email": "nope"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_form(self, client: AsyncClient):
        response = await client.post("/forms/404/leads", json={"email": "lead@example.com"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_lead(self, client: AsyncClient):
        assert (await client.get("/leads/123")).status_code == 404
        assert (await client.get("/leads/123/history")).status_code == 404
        assert (await client.post("/leads/123/confirm-email")).status_code == 404

    @pytest.mark.asyncio
    async def test_illegal_call_outcome(self, client: AsyncClient, factory):
        center = await factory.call_center()
        lead = await factory.lead(center, status="pending_call")

        response = await client.post(f"/leads/{lead.id}/call-outcome", json={"status": "pending_email"})

        assert response.status_code == 409
        assert "pending_email" in response.json()["detail"]


class TestAssignmentEndpoints:

    @pytest.mark.asyncio
    async def test_preview_and_assign(self, client: AsyncClient, factory):
        center = await factory.call_center()
        a = await factory.agent(center, "A")
        b = await factory.agent(center, "B")
        lead = await factory.lead(center, status="email_confirmed")

        response = await client.get(f"/leads/{lead.id}/distribution")
        assert response.json() == {"lead_id": lead.id, "agent_id": a.id}

        response = await client.post(f"/leads/{lead.id}/assign", json={"agent_id": b.id})
        assert response.status_code == 200
        assert response.json()["assigned_to"] == b.id

    @pytest.mark.asyncio
    async def test_cross_center_assign(self, client: AsyncClient, factory):
        center = await factory.call_center()
        other = await factory.call_center(name="Other")
        outsider = await factory.agent(other, "Outsider")
        lead = await factory.lead(center, status="email_confirmed")

        response = await client.post(f"/leads/{lead.id}/assign", json={"agent_id": outsider.id})

        assert response.status_code == 409
        assert (await factory.reload_lead(lead.id)).assigned_to is None

    @pytest.mark.asyncio
    async def test_reassign_untreated(self, client: AsyncClient, factory):
        center = await factory.call_center()
        a = await factory.agent(center, "A")
        b = await factory.agent(center, "B")
        for _ in range(3):
            await factory.lead(center, status="pending_call", assigned_to=a)

        response = await client.post(
            f"/agents/{a.id}/reassign-untreated",
            json={"call_center_id": center.id, "to_agent_id": b.id, "max_count": 2, "statuses": ["pending_call"]},
        )

        assert response.status_code == 200
        assert response.json() == {"reassigned": 2, "failed": 0, "unassigned": 0}

    @pytest.mark.asyncio
    async def test_reassign_untreated_bad_statuses(self, client: AsyncClient, factory):
        center = await factory.call_center()
        a = await factory.agent(center, "A")

        response = await client.post(
            f"/agents/{a.id}/reassign-untreated",
            json={"call_center_id": center.id, "statuses": ["confirmed"]},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_reassign_explicit_leads(self, client: AsyncClient, factory):
        center = await factory.call_center()
        a = await factory.agent(center, "A")
        b = await factory.agent(center, "B")
        lead = await factory.lead(center, status="pending_call", assigned_to=a)

        response = await client.post("/leads/reassign", json={"lead_ids": [lead.id], "to_agent_id": b.id})

        assert response.json() == {"reassigned": 1, "failed": 0, "unassigned": 0}

    @pytest.mark.asyncio
    async def test_deactivate(self, client: AsyncClient, factory):
        center = await factory.call_center()
        a = await factory.agent(center, "A")
        await factory.lead(center, status="pending_call", assigned_to=a)

        response = await client.post(f"/agents/{a.id}/deactivate")

        assert response.status_code == 200
        assert response.json()["reassignment"] == {"reassigned": 0, "failed": 0, "unassigned": 1}


class TestCallCenterEndpoints:

    @pytest.mark.asyncio
    async def test_set_distribution_method(self, client: AsyncClient, factory):
        center = await factory.call_center()

        response = await client.put(f"/call-centers/{center.id}/distribution-method", json={"method": "manual"})

        assert response.status_code == 200
        assert response.json() == {"call_center_id": center.id, "distribution_method": "manual"}

    @pytest.mark.asyncio
    async def test_unknown_distribution_method(self, client: AsyncClient, factory):
        center = await factory.call_center()

        response = await client.put(f"/call-centers/{center.id}/distribution-method", json={"method": "random"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_distribute_unassigned(self, client: AsyncClient, factory):
        center = await factory.call_center()
        await factory.agent(center, "A")
        await factory.lead(center, status="email_confirmed")

        response = await client.post("/call-centers/distribute-unassigned", params={"limit": 5})

        assert response.json() == {"distributed": 1, "failed": 0}

    @pytest.mark.asyncio
    async def test_backfill(self, client: AsyncClient, factory):
        center = await factory.call_center()
        form = await factory.form(center)
        await factory.lead(None, form=form)

        response = await client.post("/call-centers/backfill")

        assert response.json() == {"updated": 1, "distributed": 0, "unresolved": 0}
