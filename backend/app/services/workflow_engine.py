"""
Guided-form state machine.

A ``WorkflowSession`` is one run through a workflow definition. The
``WorkflowSessionManager`` owns at most one active session and is the only
thing that mutates it. Completion hands the collected answers to the
``on_complete`` callback exactly once; after that the session is gone and a
new ``start`` is required.

Sessions only ever move ``active -> completed`` or ``active -> abandoned``.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..core.errors import (
    IllegalTransitionError,
    NoActiveSessionError,
    SessionAlreadyActiveError,
    StepIncompleteError,
    UnknownStepError,
    ValidationError,
    WorkflowNotFoundError,
)
from ..models.base import generate_uuid, utcnow
from . import validation
from .workflow_definitions import Step, StepType, WorkflowDefinition, load_workflow

logger = logging.getLogger(__name__)

DRAFT_SETTING_KEY = "workflow_draft"


class SessionStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


ALLOWED_TRANSITIONS: Dict[str, set] = {
    SessionStatus.ACTIVE: {SessionStatus.COMPLETED, SessionStatus.ABANDONED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.ABANDONED: set(),
}


def rules_for(step: Step):
    """An ``ask`` step always needs an answer, whatever else it checks."""
    if step.type == StepType.ASK and "required" not in step.validation:
        return ("required",) + tuple(step.validation)
    return tuple(step.validation)


@dataclass
class WorkflowSession:
    definition: WorkflowDefinition
    session_id: str = field(default_factory=generate_uuid)
    current_step_index: int = 0
    collected_data: Dict[str, Any] = field(default_factory=dict)
    status: str = SessionStatus.ACTIVE
    started_at: datetime = field(default_factory=utcnow)

    @property
    def workflow_id(self) -> str:
        return self.definition.id

    @property
    def current_step(self) -> Step:
        return self.definition.steps[self.current_step_index]

    @property
    def is_last_step(self) -> bool:
        return self.current_step_index == self.definition.step_count - 1

    def transition(self, target: str) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise IllegalTransitionError(f"Cannot move session from {self.status} to {target}")
        self.status = target

    def to_draft(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "workflowId": self.workflow_id,
            "currentStepIndex": self.current_step_index,
            "collectedData": dict(self.collected_data),
            "startedAt": self.started_at.isoformat(),
        }


@dataclass(frozen=True)
class WorkflowCompletion:
    session_id: str
    workflow_type: str
    collected_data: Dict[str, Any]
    completed_at: datetime


class WorkflowSessionManager:

    def __init__(
        self,
        store=None,
        on_complete: Optional[Callable[[WorkflowCompletion], Any]] = None,
    ):
        self._store = store
        self._on_complete = on_complete
        self._session: Optional[WorkflowSession] = None

    @property
    def active_session(self) -> Optional[WorkflowSession]:
        return self._session

    def _require_active(self) -> WorkflowSession:
        if self._session is None or self._session.status != SessionStatus.ACTIVE:
            raise NoActiveSessionError("No active workflow session")
        return self._session

    def _save_draft(self) -> None:
        if self._store is not None and self._session is not None:
            self._store.set_json_setting(DRAFT_SETTING_KEY, self._session.to_draft())

    def _clear_draft(self) -> None:
        if self._store is not None:
            self._store.delete_setting(DRAFT_SETTING_KEY)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, definition: WorkflowDefinition) -> WorkflowSession:
        if self._session is not None and self._session.status == SessionStatus.ACTIVE:
            raise SessionAlreadyActiveError(
                f"Workflow '{self._session.workflow_id}' is still active; complete or abandon it first"
            )
        self._session = WorkflowSession(definition=definition)
        self._save_draft()
        logger.debug("Started workflow %s (session %s)", definition.id, self._session.session_id)
        return self._session

    def record_answer(self, step_key: str, value: Any) -> WorkflowSession:
        """Validate and store an answer for the current step or an earlier one."""
        session = self._require_active()
        step = session.definition.step_for_key(step_key)
        if step is None:
            raise UnknownStepError(f"Step '{step_key}' is not part of workflow '{session.workflow_id}'")
        if step.index > session.current_step_index:
            raise UnknownStepError(f"Step '{step_key}' has not been reached yet")

        violations = validation.check(rules_for(step), value)
        if violations:
            raise ValidationError(step_key, violations)

        session.collected_data[step_key] = value
        self._save_draft()
        return session

    def advance(self) -> Optional[WorkflowCompletion]:
        """
        Move to the next step. On the last step the session completes and the
        returned ``WorkflowCompletion`` is also handed to ``on_complete``.
        """
        session = self._require_active()
        step = session.current_step
        if step.type == StepType.ASK:
            if step.key not in session.collected_data or validation.check(
                rules_for(step), session.collected_data[step.key]
            ):
                raise StepIncompleteError(f"Step '{step.key}' needs a valid answer before continuing")

        if not session.is_last_step:
            session.current_step_index += 1
            self._save_draft()
            return None

        completion = WorkflowCompletion(
            session_id=session.session_id,
            workflow_type=session.workflow_id,
            collected_data=dict(session.collected_data),
            completed_at=utcnow(),
        )
        # Hand off before transitioning: a failed hand-off leaves the session
        # active on its last step so the user can retry.
        if self._on_complete is not None:
            self._on_complete(completion)
        session.transition(SessionStatus.COMPLETED)
        self._session = None
        self._clear_draft()
        logger.info("Workflow %s completed (session %s)", completion.workflow_type, completion.session_id)
        return completion

    def retreat(self) -> WorkflowSession:
        session = self._require_active()
        if session.current_step_index > 0:
            session.current_step_index -= 1
            self._save_draft()
        return session

    def abandon(self) -> WorkflowSession:
        session = self._require_active()
        session.transition(SessionStatus.ABANDONED)
        session.collected_data.clear()
        self._session = None
        self._clear_draft()
        logger.info("Workflow %s abandoned (session %s)", session.workflow_id, session.session_id)
        return session

    def resume(self, loader: Callable[[str], WorkflowDefinition] = load_workflow) -> Optional[WorkflowSession]:
        """Restore the draft left by an interrupted run, if there is one."""
        if self._session is not None:
            return self._session
        if self._store is None:
            return None
        draft = self._store.get_json_setting(DRAFT_SETTING_KEY)
        if not draft:
            return None
        try:
            definition = loader(draft["workflowId"])
        except WorkflowNotFoundError:
            logger.warning("Discarding draft for unknown workflow %s", draft.get("workflowId"))
            self._clear_draft()
            return None
        index = min(max(int(draft.get("currentStepIndex", 0)), 0), definition.step_count - 1)
        self._session = WorkflowSession(
            definition=definition,
            session_id=draft.get("sessionId") or generate_uuid(),
            current_step_index=index,
            collected_data={
                k: v for k, v in (draft.get("collectedData") or {}).items()
                if definition.step_for_key(k) is not None
            },
            started_at=datetime.fromisoformat(draft["startedAt"]) if draft.get("startedAt") else utcnow(),
        )
        return self._session
