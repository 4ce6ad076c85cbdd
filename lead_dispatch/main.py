"""
Lead Dispatch - API
===================
Thin FastAPI adapter over LeadEngine: lead intake, email confirmation,
call outcomes, assignment and reassignment.
"""

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from lead_dispatch.core.config import get_settings
from lead_dispatch.core.errors import InvalidTransition, LeadDispatchError
from lead_dispatch.core.lead_states import LeadStatus
from lead_dispatch.db.database import get_session_factory
from lead_dispatch.db.models import as_utc
from lead_dispatch.intake.pipeline import FormSubmission
from lead_dispatch.service import LeadEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Lead dispatch API starting")
    yield


app = FastAPI(
    title="Lead Dispatch",
    description="Lead distribution and status lifecycle for call centers",
    version="1.0.0",
    lifespan=lifespan,
)


@lru_cache
def get_lead_engine() -> LeadEngine:
    return LeadEngine(get_session_factory())


# ── Errors ────────────────────────────────────────────────────────────────────

def _status_code_for(exc: LeadDispatchError) -> int:
    if isinstance(exc, InvalidTransition):
        return 409
    if isinstance(exc, LookupError):
        return 404
    if isinstance(exc, ValueError):
        return 422
    return 400


@app.exception_handler(LeadDispatchError)
async def lead_dispatch_error_handler(request: Request, exc: LeadDispatchError):
    return JSONResponse(status_code=_status_code_for(exc), content={"detail": str(exc)})


# ── Request Models ────────────────────────────────────────────────────────────

class LeadSubmissionRequest(BaseModel):
    email: EmailStr
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class CallOutcomeRequest(BaseModel):
    status: str
    comment: Optional[str] = None


class AssignRequest(BaseModel):
    agent_id: int


class ReassignLeadsRequest(BaseModel):
    lead_ids: List[int] = Field(min_length=1)
    to_agent_id: int


class ReassignUntreatedRequest(BaseModel):
    call_center_id: int
    to_agent_id: Optional[int] = None
    max_count: Optional[int] = None
    statuses: Optional[List[str]] = None


class DistributionMethodRequest(BaseModel):
    method: str


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


def lead_to_dict(lead) -> dict:
    status = LeadStatus.parse(lead.status)
    return {
        "id": lead.id,
        "form_id": lead.form_id,
        "call_center_id": lead.call_center_id,
        "assigned_to": lead.assigned_to,
        "email": lead.email,
        "phone": lead.phone,
        "first_name": lead.first_name,
        "last_name": lead.last_name,
        "status": lead.status,
        "status_label": status.label if status else lead.status,
        "status_entered_at": _iso(lead.status_entered_at),
        "email_confirmed_at": _iso(lead.email_confirmed_at),
        "called_at": _iso(lead.called_at),
        "call_comment": lead.call_comment,
        "created_at": _iso(lead.created_at),
        "updated_at": _iso(lead.updated_at),
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": "Lead Dispatch",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.post("/forms/{form_id}/leads")
async def submit_lead(
    form_id: int,
    body: LeadSubmissionRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    """
    Public form submission. The lead is created in pending_email; it is
    only distributed once its email address is confirmed.
    """
    result = await engine.submit_lead(
        form_id,
        FormSubmission(
            email=body.email,
            phone=body.phone,
            first_name=body.first_name,
            last_name=body.last_name,
            payload=body.payload,
        ),
    )
    return {
        "status": result.get("status"),
        "lead_id": result.get("lead_id"),
        "message": result.get("message", "Lead processed"),
        "details": result,
    }


@app.get("/leads/{lead_id}")
async def get_lead(lead_id: int, engine: LeadEngine = Depends(get_lead_engine)):
    """Get current status and owner of a lead"""
    return lead_to_dict(await engine.get_lead(lead_id))


@app.get("/leads/{lead_id}/history")
async def get_lead_history(lead_id: int, engine: LeadEngine = Depends(get_lead_engine)):
    """Get full event history for a lead (audit trail)"""
    events = await engine.lead_history(lead_id)
    lead = await engine.get_lead(lead_id)

    return {
        "lead_id": lead_id,
        "current_status": lead.status,
        "event_count": len(events),
        "events": [
            {
                "from_status": e.from_status,
                "event": e.event,
                "to_status": e.to_status,
                "payload": e.payload,
                "occurred_at": _iso(e.occurred_at),
            }
            for e in events
        ]
    }


@app.post("/leads/{lead_id}/confirm-email")
async def confirm_email(lead_id: int, engine: LeadEngine = Depends(get_lead_engine)):
    return lead_to_dict(await engine.confirm_email(lead_id))


@app.post("/leads/{lead_id}/call-outcome")
async def record_call_outcome(
    lead_id: int,
    body: CallOutcomeRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    lead = await engine.update_after_call(lead_id, body.status, body.comment)
    return lead_to_dict(lead)


@app.get("/leads/{lead_id}/distribution")
async def preview_distribution(lead_id: int, engine: LeadEngine = Depends(get_lead_engine)):
    """Which agent automatic distribution would pick right now (nothing is saved)"""
    return {"lead_id": lead_id, "agent_id": await engine.distribute_lead(lead_id)}


@app.post("/leads/{lead_id}/assign")
async def assign_lead(
    lead_id: int,
    body: AssignRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    if not await engine.assign_to_agent(lead_id, body.agent_id):
        raise HTTPException(status_code=409, detail="Agent cannot be assigned this lead")
    return lead_to_dict(await engine.get_lead(lead_id))


@app.post("/leads/reassign")
async def reassign_leads(body: ReassignLeadsRequest, engine: LeadEngine = Depends(get_lead_engine)):
    result = await engine.reassign_leads(body.lead_ids, body.to_agent_id)
    return result.as_dict()


@app.post("/agents/{agent_id}/reassign-untreated")
async def reassign_untreated(
    agent_id: int,
    body: ReassignUntreatedRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    result = await engine.reassign_untreated_leads(
        agent_id,
        body.to_agent_id,
        body.call_center_id,
        body.max_count,
        body.statuses,
    )
    return result.as_dict()


@app.post("/agents/{agent_id}/deactivate")
async def deactivate_agent(agent_id: int, engine: LeadEngine = Depends(get_lead_engine)):
    result = await engine.deactivate_agent(agent_id)
    return {
        "agent_id": agent_id,
        "is_active": False,
        "reassignment": result.as_dict() if result is not None else None,
    }


@app.put("/call-centers/{call_center_id}/distribution-method")
async def set_distribution_method(
    call_center_id: int,
    body: DistributionMethodRequest,
    engine: LeadEngine = Depends(get_lead_engine),
):
    call_center = await engine.set_distribution_method(call_center_id, body.method)
    return {"call_center_id": call_center.id, "distribution_method": call_center.distribution_method}


@app.post("/call-centers/distribute-unassigned")
async def distribute_unassigned(
    limit: Optional[int] = None,
    engine: LeadEngine = Depends(get_lead_engine),
):
    if limit is not None and limit < 1:
        raise HTTPException(status_code=422, detail="limit must be at least 1")
    return await engine.distribute_unassigned_leads(limit)


@app.post("/call-centers/backfill")
async def backfill_call_centers(engine: LeadEngine = Depends(get_lead_engine)):
    return await engine.backfill_call_centers()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
