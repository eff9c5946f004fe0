"""
Error taxonomy shared by the guided-form engine, the device sync queue and
the remote submission service.
"""
from typing import List, Optional


class SahayakError(Exception):
    code = "SERVER_ERROR"


# ── Guided form ──────────────────────────────────────────────────────────────

class ValidationError(SahayakError):
    """An answer broke one or more of its step's validation rules."""
    code = "VALIDATION_ERROR"

    def __init__(self, step_key: str, violations: List[str]):
        self.step_key = step_key
        self.violations = list(violations)
        super().__init__(f"Invalid answer for '{step_key}': {', '.join(self.violations)}")


class WorkflowStateError(SahayakError):
    code = "INVALID_WORKFLOW_STATE"


class SessionAlreadyActiveError(WorkflowStateError):
    pass


class NoActiveSessionError(WorkflowStateError):
    pass


class UnknownStepError(WorkflowStateError):
    pass


class StepIncompleteError(WorkflowStateError):
    code = "STEP_INCOMPLETE"


class IllegalTransitionError(WorkflowStateError):
    pass


class WorkflowNotFoundError(SahayakError):
    code = "WORKFLOW_NOT_FOUND"


# ── Sync ─────────────────────────────────────────────────────────────────────

class SyncError(SahayakError):
    code = "SYNC_ERROR"


class NetworkError(SyncError):
    """Transport-level failure (offline, DNS, timeout). Always retryable."""
    code = "NETWORK_ERROR"


class ServerError(SyncError):
    """The remote system received the request and rejected it."""
    code = "SERVER_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class UserNotFoundError(ServerError):
    code = "USER_NOT_FOUND"

    def __init__(self, message: str = "User not found"):
        super().__init__(message, status_code=404)


class DuplicateSubmissionError(SyncError):
    """The idempotency key was already processed; carries the earlier record."""
    code = "DUPLICATE_SUBMISSION"

    def __init__(self, record):
        self.record = record
        super().__init__(f"Already submitted as {record.reference_number}")
