# tests/models/test_session_state.py

import pytest

from guided_dialogue.core.exceptions import SessionStateError
from guided_dialogue.models.session_state import (
    DialogueSession,
    SessionStatus,
    StepProgress,
    StepStatus,
)


@pytest.fixture
def session():
    return DialogueSession(user_id="user-1", flow_id="contact")


@pytest.mark.unit
class TestStepProgress:

    def test_answered_vs_value(self):
        progress = StepProgress(step_id="s")
        progress.record_value("a", "1")
        progress.record_skip("b")

        assert progress.has_value("a") and progress.is_answered("a")
        assert not progress.has_value("b") and progress.is_answered("b")
        assert not progress.is_answered("c")

    def test_completed_step_is_immutable(self):
        progress = StepProgress(step_id="s")
        progress.record_value("a", "1")
        progress.complete("snapshot")

        with pytest.raises(SessionStateError):
            progress.record_value("a", "2")
        with pytest.raises(SessionStateError):
            progress.reset()

        assert progress.get_value("a") == "1"
        assert progress.field_values["a"].confirmed

    def test_reset(self):
        progress = StepProgress(step_id="s", status=StepStatus.IN_PROGRESS)
        progress.record_value("a", "1")

        progress.reset()

        assert progress.field_values == {}
        assert progress.status == StepStatus.IN_PROGRESS


@pytest.mark.unit
class TestDialogueSession:

    def test_defaults(self, session):
        assert session.session_id
        assert session.status == SessionStatus.ACTIVE
        assert session.is_active
        assert session.version == 0
        assert session.current_step_id is None

    def test_ensure_step_progress_starts_step(self, session):
        progress = session.ensure_step_progress("s")

        assert progress.status == StepStatus.IN_PROGRESS
        assert progress.started_at is not None
        assert session.ensure_step_progress("s") is progress

    def test_completed_step_is_never_reopened(self, session):
        first = session.ensure_step_progress("s")
        first.record_value("a", "1")
        first.complete(None)

        second = session.ensure_step_progress("s")

        assert second is not first
        assert session.get_step_progress("s") is second
        assert first.status == StepStatus.COMPLETED

    def test_collected_data_only_includes_completed_steps(self, session):
        done = session.ensure_step_progress("one")
        done.record_value("a", "1")
        done.complete(None)
        session.ensure_step_progress("two").record_value("b", "2")

        assert session.collected_data() == {"a": "1"}

    def test_mark_completed(self, session):
        session.mark_completed()

        assert session.status == SessionStatus.COMPLETED
        assert session.completed_at is not None
        assert not session.is_active

    def test_json_round_trip(self, session):
        session.current_step_id = "s"
        session.ensure_step_progress("s").record_value("a", "1")

        restored = DialogueSession.model_validate_json(session.model_dump_json())

        assert restored == session
