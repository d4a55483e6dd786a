"""
Unit tests for the Workflow State Engine.
Tests the state machine and permission gate in services/workflow_engine.py
"""
import pytest
from datetime import datetime, timezone, timedelta

from ehs_hub.services.workflow_engine import (
    WorkflowEngine,
    WorkflowStatus,
    WorkflowEvent,
    WorkflowAction,
    WorkflowHistoryEntry,
    ActorRole,
    StatusOwner,
    WORKFLOW_TRANSITIONS,
)
from ehs_hub.services.workflow_models import WorkflowRecord


RESPONSIBLE = "user-responsible"
VALIDATOR = "user-validator"


def make_record(status, **kwargs):
    return WorkflowRecord(
        id="wf-1",
        title="Replace guard rail",
        responsible_id=RESPONSIBLE,
        status=status,
        **kwargs
    )


class TestWorkflowStatus:
    """Test workflow status enum values."""

    def test_all_statuses_defined(self):
        """Verify all expected workflow statuses exist."""
        expected = ['pending', 'submitted_completed', 'submitted_blocked', 'approved', 'returned']
        actual = [s.value for s in WorkflowStatus]
        assert sorted(actual) == sorted(expected)

    def test_every_status_has_a_transition_row(self):
        for status in WorkflowStatus:
            assert status.value in WORKFLOW_TRANSITIONS

    def test_parse_unknown_status(self):
        """Unknown strings parse to None instead of raising."""
        assert WorkflowEngine.parse_status("rejected") is None
        assert WorkflowEngine.parse_status(None) is None
        assert WorkflowEngine.parse_status("approved") == WorkflowStatus.APPROVED


class TestWorkflowTransitions:
    """Test the state machine transition rules."""

    @pytest.mark.parametrize("start", [WorkflowStatus.PENDING, WorkflowStatus.RETURNED])
    def test_submit_completed(self, start):
        can, next_status, _ = WorkflowEngine.can_transition(
            start.value, WorkflowEvent.SUBMIT_COMPLETED.value
        )
        assert can is True
        assert next_status == WorkflowStatus.SUBMITTED_COMPLETED.value

    @pytest.mark.parametrize("start", [WorkflowStatus.PENDING, WorkflowStatus.RETURNED])
    def test_submit_blocked(self, start):
        can, next_status, _ = WorkflowEngine.can_transition(
            start.value, WorkflowEvent.SUBMIT_BLOCKED.value
        )
        assert can is True
        assert next_status == WorkflowStatus.SUBMITTED_BLOCKED.value

    @pytest.mark.parametrize("start", [WorkflowStatus.SUBMITTED_COMPLETED, WorkflowStatus.SUBMITTED_BLOCKED])
    def test_approve_and_return(self, start):
        can, next_status, _ = WorkflowEngine.can_transition(start, WorkflowEvent.APPROVE)
        assert can is True
        assert next_status == WorkflowStatus.APPROVED.value

        can, next_status, _ = WorkflowEngine.can_transition(start, WorkflowEvent.RETURN)
        assert can is True
        assert next_status == WorkflowStatus.RETURNED.value

    def test_approved_is_terminal(self):
        """No event leaves approved."""
        for event in WorkflowEvent:
            can, next_status, reason = WorkflowEngine.can_transition(
                WorkflowStatus.APPROVED.value, event.value
            )
            assert can is False
            assert next_status is None
            assert "not valid" in reason.lower()

    def test_invalid_transition_blocked(self):
        """Can't approve a pending item."""
        can, _, reason = WorkflowEngine.can_transition(
            WorkflowStatus.PENDING.value,
            WorkflowEvent.APPROVE.value
        )
        assert can is False
        assert "not valid" in reason.lower()

    def test_unknown_status_has_no_transitions(self):
        can, next_status, reason = WorkflowEngine.can_transition("rejected", WorkflowEvent.APPROVE.value)
        assert can is False
        assert next_status is None
        assert "rejected" in reason

    def test_event_actors(self):
        assert WorkflowEngine.get_actor_for_event(WorkflowEvent.SUBMIT_COMPLETED) == ActorRole.RESPONSIBLE
        assert WorkflowEngine.get_actor_for_event(WorkflowEvent.SUBMIT_BLOCKED) == ActorRole.RESPONSIBLE
        assert WorkflowEngine.get_actor_for_event(WorkflowEvent.APPROVE) == ActorRole.VALIDATOR
        assert WorkflowEngine.get_actor_for_event(WorkflowEvent.RETURN) == ActorRole.VALIDATOR

    @pytest.mark.parametrize("event", [WorkflowEvent.SUBMIT_COMPLETED, WorkflowEvent.SUBMIT_BLOCKED])
    def test_responsible_fires_submissions(self, event):
        record = make_record("pending")
        assert WorkflowEngine.is_event_actor(record, event, RESPONSIBLE) is True
        assert WorkflowEngine.is_event_actor(record, event, VALIDATOR) is False
        assert WorkflowEngine.is_event_actor(record, event, None) is False

    @pytest.mark.parametrize("event", [WorkflowEvent.APPROVE, WorkflowEvent.RETURN])
    def test_anyone_else_fires_decisions(self, event):
        record = make_record("submitted_completed")
        assert WorkflowEngine.is_event_actor(record, event, VALIDATOR) is True
        assert WorkflowEngine.is_event_actor(record, event, RESPONSIBLE) is False
        assert WorkflowEngine.is_event_actor(record, event, "") is False

    def test_unknown_event_has_no_actor(self):
        assert WorkflowEngine.get_actor_for_event("reopen") is None
        assert WorkflowEngine.is_event_actor(make_record("pending"), "reopen", RESPONSIBLE) is False

    def test_history_action_labels(self):
        assert WorkflowEngine.get_history_action("pending", "submitted_completed") == "submitted_completed"
        assert WorkflowEngine.get_history_action("returned", "submitted_blocked") == "resubmitted"
        assert WorkflowEngine.get_history_action("submitted_blocked", "returned") == "returned"
        assert WorkflowEngine.get_history_action("submitted_completed", "approved") == "approved"


class TestAvailableActions:
    """Test the permission-gated action resolver."""

    def test_approved_has_no_actions(self):
        record = make_record(WorkflowStatus.APPROVED.value)
        assert WorkflowEngine.get_available_actions(record, RESPONSIBLE) == set()
        assert WorkflowEngine.get_available_actions(record, VALIDATOR) == set()

    @pytest.mark.parametrize("status", ["pending", "returned"])
    def test_respond_only_for_responsible(self, status):
        record = make_record(status)
        assert WorkflowAction.RESPOND in WorkflowEngine.get_available_actions(record, RESPONSIBLE)
        assert WorkflowAction.RESPOND not in WorkflowEngine.get_available_actions(record, VALIDATOR)

    def test_pending_respond_without_resubmit(self):
        record = make_record("pending")
        assert WorkflowEngine.get_available_actions(record, RESPONSIBLE) == {WorkflowAction.RESPOND}

    def test_returned_is_labelled_resubmit(self):
        record = make_record("returned")
        assert WorkflowEngine.get_available_actions(record, RESPONSIBLE) == {
            WorkflowAction.RESPOND, WorkflowAction.RESUBMIT
        }

    @pytest.mark.parametrize("status", ["submitted_completed", "submitted_blocked"])
    def test_validate_for_anyone_but_responsible(self, status):
        record = make_record(status)
        assert WorkflowEngine.get_available_actions(record, VALIDATOR) == {WorkflowAction.VALIDATE}
        assert WorkflowEngine.get_available_actions(record, RESPONSIBLE) == set()

    @pytest.mark.parametrize("status", [s.value for s in WorkflowStatus])
    def test_anonymous_viewer_has_no_actions(self, status):
        record = make_record(status)
        assert WorkflowEngine.get_available_actions(record, None) == set()
        assert WorkflowEngine.get_available_actions(record, "") == set()

    @pytest.mark.parametrize("status", [s.value for s in WorkflowStatus] + ["rejected"])
    @pytest.mark.parametrize("viewer", [RESPONSIBLE, VALIDATOR])
    def test_never_respond_and_validate(self, status, viewer):
        actions = WorkflowEngine.get_available_actions(make_record(status), viewer)
        assert not (WorkflowAction.RESPOND in actions and WorkflowAction.VALIDATE in actions)

    def test_unknown_status_has_no_actions(self):
        record = make_record("rejected")
        assert WorkflowEngine.get_available_actions(record, RESPONSIBLE) == set()
        assert WorkflowEngine.get_available_actions(record, VALIDATOR) == set()


class TestStatusDisplay:
    """Test status display helpers."""

    def test_owner_mapping(self):
        assert WorkflowEngine.get_owner("pending") == StatusOwner.RESPONSIBLE
        assert WorkflowEngine.get_owner("returned") == StatusOwner.RESPONSIBLE
        assert WorkflowEngine.get_owner("submitted_completed") == StatusOwner.VALIDATOR
        assert WorkflowEngine.get_owner("submitted_blocked") == StatusOwner.VALIDATOR
        assert WorkflowEngine.get_owner("approved") == StatusOwner.CLOSED
        assert WorkflowEngine.get_owner("rejected") == StatusOwner.UNKNOWN

    def test_unknown_status_passes_through(self):
        display = WorkflowEngine.get_status_display(make_record("rejected"))
        assert display["status"] == "rejected"
        assert display["recognized"] is False
        assert display["owner"] == "unknown"
        assert display["queue"] is None

    def test_overdue_pending(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        record = make_record("pending", deadline="2026-02-27T12:00:00+00:00")
        display = WorkflowEngine.get_status_display(record, now)
        assert display["is_overdue"] is True
        assert display["queue"] == "overdue"

    def test_overdue_submitted_keeps_queue(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        record = make_record("submitted_completed", deadline="2026-02-27")
        display = WorkflowEngine.get_status_display(record, now)
        assert display["is_overdue"] is True
        assert display["queue"] == "awaiting_validation"

    def test_approved_never_overdue(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        record = make_record("approved", deadline="2026-02-27T12:00:00Z")
        assert WorkflowEngine.is_overdue(record, now) is False

    def test_future_or_missing_deadline(self):
        now = datetime.now(timezone.utc)
        future = (now + timedelta(days=3)).isoformat()
        assert WorkflowEngine.is_overdue(make_record("pending", deadline=future), now) is False
        assert WorkflowEngine.is_overdue(make_record("pending"), now) is False

    def test_garbage_deadline_ignored(self):
        assert WorkflowEngine.is_overdue(make_record("pending", deadline="next tuesday-ish")) is False

    def test_terminal_statuses(self):
        assert WorkflowEngine.get_terminal_statuses() == ["approved"]
        assert WorkflowEngine.is_terminal("approved") is True
        assert WorkflowEngine.is_terminal("returned") is False


class TestWorkflowHistoryEntry:

    def test_to_dict(self):
        entry = WorkflowHistoryEntry(
            action="returned",
            from_status="submitted_completed",
            to_status="returned",
            performed_by=VALIDATOR,
            notes="fix X",
        )
        d = entry.to_dict()
        assert d["action"] == "returned"
        assert d["performed_by"] == VALIDATOR
        assert d["notes"] == "fix X"
        assert d["photos"] == []
        assert d["timestamp"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
