"""
Lead Lifecycle Statuses
Every lead is in exactly ONE of these statuses at any time
"""

from dataclasses import dataclass
from enum import Enum


class LeadStatus(str, Enum):
    # Double opt-in
    PENDING_EMAIL = "pending_email"                  # Form submitted, waiting for the email link
    EMAIL_CONFIRMED = "email_confirmed"              # Opt-in confirmed, ready to be distributed
    PENDING_CALL = "pending_call"                    # Assigned, waiting for the agent's call

    # Call outcomes
    CONFIRMED = "confirmed"                          # Interested (terminal)
    REJECTED = "rejected"                            # Declined the offer (terminal)
    CALLBACK_PENDING = "callback_pending"            # Callback scheduled
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    WRONG_NUMBER = "wrong_number"                    # (terminal)

    # Commercial follow-up
    NOT_INTERESTED = "not_interested"                # (terminal)
    QUALIFIED = "qualified"
    CONVERTED = "converted"                          # Became a customer (terminal)
    FOLLOW_UP = "follow_up"
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    QUOTE_SENT = "quote_sent"
    DO_NOT_CALL = "do_not_call"                      # Opted out of calls (terminal)

    @property
    def label(self) -> str:
        return STATUS_INFO[self].label

    @property
    def display_order(self) -> int:
        return STATUS_INFO[self].order

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES

    @property
    def can_be_set_after_call(self) -> bool:
        return self in POST_CALL_STATUSES

    @property
    def is_untreated(self) -> bool:
        return self in UNTREATED_STATUSES

    @classmethod
    def parse(cls, value) -> "LeadStatus | None":
        """Return the matching status, or None for an unknown value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class LeadEvent(str, Enum):
    LEAD_CREATED = "LEAD_CREATED"
    EMAIL_CONFIRMED = "EMAIL_CONFIRMED"
    CALL_CENTER_RESOLVED = "CALL_CENTER_RESOLVED"
    AGENT_ASSIGNED = "AGENT_ASSIGNED"
    AGENT_UNASSIGNED = "AGENT_UNASSIGNED"
    CALL_OUTCOME_RECORDED = "CALL_OUTCOME_RECORDED"


@dataclass(frozen=True)
class StatusInfo:
    label: str
    order: int


STATUS_INFO = {
    LeadStatus.PENDING_EMAIL: StatusInfo("Awaiting email confirmation", 10),
    LeadStatus.EMAIL_CONFIRMED: StatusInfo("Email confirmed", 20),
    LeadStatus.PENDING_CALL: StatusInfo("In call queue", 30),
    LeadStatus.CALLBACK_PENDING: StatusInfo("Callback scheduled", 40),
    LeadStatus.NO_ANSWER: StatusInfo("No answer", 50),
    LeadStatus.BUSY: StatusInfo("Line busy", 60),
    LeadStatus.FOLLOW_UP: StatusInfo("Follow-up required", 70),
    LeadStatus.APPOINTMENT_SCHEDULED: StatusInfo("Appointment scheduled", 80),
    LeadStatus.QUOTE_SENT: StatusInfo("Quote sent", 90),
    LeadStatus.QUALIFIED: StatusInfo("Qualified", 100),
    LeadStatus.CONFIRMED: StatusInfo("Interested", 110),
    LeadStatus.CONVERTED: StatusInfo("Converted", 120),
    LeadStatus.NOT_INTERESTED: StatusInfo("Not interested", 130),
    LeadStatus.WRONG_NUMBER: StatusInfo("Wrong number", 140),
    LeadStatus.REJECTED: StatusInfo("Rejected", 150),
    LeadStatus.DO_NOT_CALL: StatusInfo("Do not call", 160),
}

# Leads that still require action from someone
ACTIVE_STATUSES = frozenset({
    LeadStatus.PENDING_EMAIL,
    LeadStatus.EMAIL_CONFIRMED,
    LeadStatus.PENDING_CALL,
    LeadStatus.CALLBACK_PENDING,
    LeadStatus.FOLLOW_UP,
    LeadStatus.APPOINTMENT_SCHEDULED,
    LeadStatus.QUOTE_SENT,
})

# Terminal statuses - once a lead reaches these, it stops moving
FINAL_STATUSES = frozenset({
    LeadStatus.CONFIRMED,
    LeadStatus.REJECTED,
    LeadStatus.CONVERTED,
    LeadStatus.NOT_INTERESTED,
    LeadStatus.WRONG_NUMBER,
    LeadStatus.DO_NOT_CALL,
})

# Statuses owned by the engine itself; an agent never records them after a call
PRE_CALL_STATUSES = frozenset({
    LeadStatus.PENDING_EMAIL,
    LeadStatus.EMAIL_CONFIRMED,
    LeadStatus.PENDING_CALL,
})

POST_CALL_STATUSES = frozenset(LeadStatus) - PRE_CALL_STATUSES

# Leads that may be handed to an agent by automatic distribution
DISTRIBUTABLE_STATUSES = frozenset({
    LeadStatus.EMAIL_CONFIRMED,
    LeadStatus.PENDING_CALL,
})

# Sitting in an agent's queue without a disposition yet.
# Shared by weighted distribution load counts and by reassignment.
UNTREATED_STATUSES = DISTRIBUTABLE_STATUSES | {LeadStatus.CALLBACK_PENDING}


def status_values(statuses) -> list[str]:
    """Plain string values, sorted by display order (for SQL IN clauses)."""
    return [s.value for s in sorted(statuses, key=lambda s: s.display_order)]


TRANSITIONS = {
    # (current_status, event) -> next_status
    (LeadStatus.PENDING_EMAIL, LeadEvent.EMAIL_CONFIRMED): LeadStatus.EMAIL_CONFIRMED,
    (LeadStatus.EMAIL_CONFIRMED, LeadEvent.AGENT_ASSIGNED): LeadStatus.PENDING_CALL,
}
