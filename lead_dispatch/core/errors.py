"""
Engine errors

Only mutation-integrity problems are exceptions. "No eligible agent" and
"no call center" are normal outcomes and come back as None.
"""


class LeadDispatchError(Exception):
    pass


class InvalidTransition(LeadDispatchError):
    """A status change that is not legal from the lead's current status."""

    def __init__(self, lead_id, current, requested, reason: str = ""):
        self.lead_id = lead_id
        self.current = current
        self.requested = requested
        self.reason = reason
        message = f"Illegal transition for lead {lead_id}: {current} -> {requested}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidReassignment(LeadDispatchError, ValueError):
    pass


class InvalidDistributionMethod(LeadDispatchError, ValueError):
    def __init__(self, method):
        self.method = method
        super().__init__(f"Unknown distribution method {method!r}")


class LeadNotFound(LeadDispatchError, LookupError):
    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} not found")


class AgentNotFound(LeadDispatchError, LookupError):
    def __init__(self, agent_id):
        self.agent_id = agent_id
        super().__init__(f"Agent {agent_id} not found")


class CallCenterNotFound(LeadDispatchError, LookupError):
    def __init__(self, call_center_id):
        self.call_center_id = call_center_id
        super().__init__(f"Call center {call_center_id} not found")


class FormNotFound(LeadDispatchError, LookupError):
    def __init__(self, form_id):
        self.form_id = form_id
        super().__init__(f"Form {form_id} not found")
