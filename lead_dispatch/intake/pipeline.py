"""
Intake Pipeline
===============
Form submission -> validated contact data -> lead in pending_email.

The confirmation email itself is sent by whoever calls this; the lead only
moves on once confirm_email() is called for it.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lead_dispatch.core.errors import FormNotFound
from lead_dispatch.core.lead_states import LeadEvent, LeadStatus
from lead_dispatch.db import queries
from lead_dispatch.db.models import Lead as LeadModel, LeadEvent as EventModel, utcnow

logger = logging.getLogger(__name__)


# ── Raw Submission ────────────────────────────────────────────────────────────

@dataclass
class FormSubmission:
    """What a public form posts, before validation"""
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


# ── Validation ────────────────────────────────────────────────────────────────

EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}$")
PHONE_STRIP = re.compile(r"[\s.\-()]")
PHONE_REGEX = re.compile(r"^\+?[0-9]{6,20}$")


def sanitize_submission(raw: FormSubmission) -> dict:
    """Validate and clean a submission. Double opt-in needs an email."""
    if not raw.email:
        return {"valid": False, "errors": ["missing_email"]}

    errors = []

    email = raw.email.strip().lower()
    if not EMAIL_REGEX.match(email):
        errors.append(f"invalid_email: {email}")

    phone = None
    if raw.phone:
        phone = PHONE_STRIP.sub("", raw.phone)
        if not PHONE_REGEX.match(phone):
            errors.append(f"invalid_phone: {raw.phone}")

    if errors:
        return {"valid": False, "errors": errors}

    return {"valid": True, "email": email, "phone": phone}


def _clean_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ── Pipeline ──────────────────────────────────────────────────────────────────

class IntakePipeline:
    """validate → resolve form → persist as pending_email"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def submit(self, form_id: int, raw: FormSubmission) -> dict:
        validation = sanitize_submission(raw)
        if not validation["valid"]:
            logger.info(f"Rejected submission on form {form_id}: {validation['errors']}")
            return {
                "status": "rejected",
                "reason": "validation_failed",
                "errors": validation["errors"],
            }

        async with self.session_factory() as session:
            form = await queries.get_form(session, form_id)
            if form is None:
                raise FormNotFound(form_id)

            now = utcnow()
            lead = LeadModel(
                form_id=form.id,
                call_center_id=form.call_center_id,
                email=validation["email"],
                phone=validation["phone"],
                first_name=_clean_name(raw.first_name),
                last_name=_clean_name(raw.last_name),
                form_payload=raw.payload or {},
                status=LeadStatus.PENDING_EMAIL.value,
                status_entered_at=now,
                created_at=now,
                updated_at=now,
            )
            session.add(lead)
            await session.flush()

            session.add(
                EventModel(
                    lead_id=lead.id,
                    from_status="NONE",
                    event=LeadEvent.LEAD_CREATED.value,
                    to_status=LeadStatus.PENDING_EMAIL.value,
                    payload={"form_id": form.id, "call_center_id": form.call_center_id},
                    occurred_at=now,
                )
            )

            await session.commit()
            lead_id = lead.id

        if form.call_center_id is None:
            logger.warning(f"Form {form_id} has no call center; lead {lead_id} cannot be distributed yet")
        logger.info(f"Lead {lead_id} created from form {form_id}, awaiting email confirmation")

        return {
            "status": "created",
            "lead_id": lead_id,
            "message": "Lead created, awaiting email confirmation",
        }
