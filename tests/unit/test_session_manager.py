"""
Unit Tests for Session Manager

Tests snapshot round-tripping, corrupt snapshot handling and listings.
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "practice_exam", "src"))

from practice_exam.session_manager import SessionManager, session_key
from practice_exam.session_state import SessionState
from practice_exam.storage import InMemoryStore


class TestSessionManager:
    """Test suite for SessionManager."""

    @pytest.fixture
    def store(self):
        return InMemoryStore()

    @pytest.fixture
    def manager(self, store):
        return SessionManager(store)

    @pytest.fixture
    def session(self):
        return SessionState(
            module_id="m1",
            attempt_id="attempt_1",
            student_id="s1",
            answers={"q1": ["o2", "o1"], "q2": []},
            flagged={"q3", "q2"},
            time_spent={"q1": 12.5},
            current_question_index=2,
            remaining_seconds=300,
        )

    def test_save_and_load(self, manager, store, session):
        assert manager.save_session(session) is True

        loaded = manager.get_session("m1")

        assert loaded.answers == {"q1": ["o2", "o1"], "q2": []}
        assert loaded.flagged == {"q2", "q3"}
        assert loaded.time_spent == {"q1": 12.5}
        assert loaded.current_question_index == 2
        assert loaded.remaining_seconds == 300
        assert loaded.started_at == session.started_at
        assert json.loads(store.get(session_key("m1")))["flagged"] == ["q2", "q3"]

    def test_missing_snapshot(self, manager):
        assert manager.get_session("nope") is None

    @pytest.mark.parametrize("raw", ["{broken", json.dumps({"answers": {}}), json.dumps([1, 2])])
    def test_corrupt_snapshot_is_removed(self, manager, store, raw):
        store.set(session_key("m1"), raw)

        assert manager.get_session("m1") is None
        assert session_key("m1") not in store

    def test_submitted_snapshot_is_not_resumable(self, manager, store, session):
        session.submitted = True
        manager.save_session(session)

        assert manager.get_session("m1") is None
        assert session_key("m1") not in store

    def test_delete_session(self, manager, session):
        manager.save_session(session)

        assert manager.delete_session("m1") is True
        assert manager.delete_session("m1") is False

    def test_list_saved_sessions_most_recent_first(self, manager, store, session):
        older = SessionState(module_id="m0", attempt_id="attempt_0", student_id="s1", answers={"q1": ["o1"]})
        manager.save_session(older)
        manager.save_session(session)

        data = json.loads(store.get(session_key("m0")))
        data["last_updated"] = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        store.set(session_key("m0"), json.dumps(data))
        store.set("practice_result_m9", "{}")

        saved = manager.list_saved_sessions()

        assert [s.module_id for s in saved] == ["m1", "m0"]
        assert saved[0].answered_count == 1
        assert saved[0].flagged_count == 2
        assert saved[0].remaining_seconds == 300
