"""
Audit Facts
===========
The engine emits facts, it never stores or queries them.

Facts are staged on the SQLAlchemy session while a transaction is open and
handed to the sink only once the commit has landed, so a rolled back change
never shows up in the audit trail.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from lead_dispatch.db.models import utcnow

logger = logging.getLogger(__name__)

_STAGED_KEY = "lead_dispatch.staged_audit_facts"


class AuditAction(str, Enum):
    LEAD_ASSIGNED = "lead.assigned"
    LEAD_STATUS_UPDATED = "lead.status_updated"
    DISTRIBUTION_METHOD_CHANGED = "distribution_method.changed"


@dataclass(frozen=True)
class AuditFact:
    action: AuditAction
    subject_id: int
    properties: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "action": self.action.value,
            "subject_id": self.subject_id,
            "properties": dict(self.properties),
            "occurred_at": self.occurred_at.isoformat(),
        }


class AuditSink(Protocol):
    async def emit(self, fact: AuditFact) -> None:
        ...


class LoggingAuditSink:
    """Default sink: writes every fact to the audit logger."""

    def __init__(self, logger_name: str = "lead_dispatch.audit"):
        self._logger = logging.getLogger(logger_name)

    async def emit(self, fact: AuditFact) -> None:
        self._logger.info(f"{fact.action.value} subject={fact.subject_id} {fact.properties}")


class MemoryAuditSink:
    """Keeps facts in a list (useful for tests and local runs)."""

    def __init__(self):
        self.facts: List[AuditFact] = []

    async def emit(self, fact: AuditFact) -> None:
        self.facts.append(fact)

    def of(self, action: AuditAction) -> List[AuditFact]:
        return [f for f in self.facts if f.action == action]


def stage(session: AsyncSession, fact: AuditFact) -> None:
    session.info.setdefault(_STAGED_KEY, []).append(fact)


def staged(session: AsyncSession) -> List[AuditFact]:
    return list(session.info.get(_STAGED_KEY, []))


async def rollback(session: AsyncSession) -> None:
    await session.rollback()
    session.info.pop(_STAGED_KEY, None)


async def commit_and_publish(session: AsyncSession, sink: AuditSink) -> None:
    """Commit, then publish whatever was staged during the transaction."""
    await session.commit()
    facts = session.info.pop(_STAGED_KEY, [])

    for fact in facts:
        try:
            await sink.emit(fact)
        except Exception:
            # The change is committed; a broken sink must not make it look failed
            logger.exception(f"Audit sink failed for {fact.action.value} on {fact.subject_id}")
