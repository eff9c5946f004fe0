"""Tests for workflow status tracking."""
import pytest

from app.core.errors import IllegalTransitionError
from app.models.workflow import WorkflowStatus
from app.services import sync_processor, tracking


@pytest.fixture()
def record(db):
    return sync_processor.submit_workflow(db, "aadhaar-application", {"ask_name": "Asha"}, local_id="l-1")


def test_submitted_view(record):
    view = tracking.tracking_view(record)
    assert view["status"] == WorkflowStatus.SUBMITTED
    assert view["progress"] == 25
    assert [t["stage"] for t in view["timeline"]] == ["submitted"]
    assert view["estimatedCompletion"].endswith("Z")


def test_progress_through_review(db, record):
    tracking.update_status(db, record, WorkflowStatus.PROCESSING)
    assert tracking.tracking_view(record)["progress"] == 60
    tracking.update_status(db, record, WorkflowStatus.COMPLETED)
    view = tracking.tracking_view(record)
    assert view["progress"] == 100
    assert [t["stage"] for t in view["timeline"]] == ["submitted", "processing", "completed"]


def test_terminal_status_is_final(db, record):
    tracking.update_status(db, record, WorkflowStatus.REJECTED)
    with pytest.raises(IllegalTransitionError):
        tracking.update_status(db, record, WorkflowStatus.PROCESSING)


def test_cannot_skip_processing(db, record):
    with pytest.raises(IllegalTransitionError):
        tracking.update_status(db, record, WorkflowStatus.COMPLETED)
