"""
Exception taxonomy for the outreach pipeline.

Only ValidationError and BacklogFull are meant to reach callers of the
pipeline. The collaborator and policy errors are raised internally and
converted into decisions or dispatch results at the engine / orchestrator
boundary.
"""


class ReengageError(Exception):
    """Base class for all project errors."""


class ValidationError(ReengageError):
    """Malformed telemetry. The single event is rejected; the pipeline continues."""


class CollaboratorUnavailable(ReengageError):
    """The reasoning or telephony service is unreachable, failed, or timed out."""

    def __init__(self, collaborator: str, detail: str):
        self.collaborator = collaborator
        self.detail = detail
        super().__init__(f"{collaborator} unavailable: {detail}")


class ReasoningResponseError(CollaboratorUnavailable):
    """The reasoning service answered, but not with the structured schema."""

    def __init__(self, detail: str):
        super().__init__("reasoning", detail)


class PolicyViolation(ReengageError):
    """A second outreach was attempted for a user that was already called."""

    def __init__(self, user_id: str, detail: str = "user already has a call record"):
        self.user_id = user_id
        super().__init__(f"{user_id}: {detail}")


class AggregationInconsistency(ReengageError):
    """Running aggregate totals went out of range. Should not happen."""


class BacklogFull(ReengageError):
    """Every decision worker slot is taken; the snapshot was not accepted."""
