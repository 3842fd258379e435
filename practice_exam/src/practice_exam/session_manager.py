"""
Session Manager for State Persistence

Keeps snapshots of in-progress exam sessions in the key/value store so an
interrupted attempt can be resumed with its answers, flags and time intact.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from practice_exam.session_state import SessionState, utc_now
from practice_exam.storage import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "exam_session_"


def session_key(module_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{module_id}"


@dataclass
class SavedSession:
    """Summary of a resumable attempt, for listings."""
    module_id: str
    answered_count: int
    flagged_count: int
    remaining_seconds: Optional[int]
    last_updated: datetime


class SessionManager:
    """
    Manages in-progress session snapshots.

    One snapshot per module, stored under `exam_session_<module_id>`.
    """

    def __init__(self, store: KeyValueStore):
        """
        Args:
            store: Backing key/value store
        """
        self.store = store

    def session_to_dict(self, session: SessionState) -> Dict[str, Any]:
        """
        Convert SessionState to a JSON-ready dictionary.

        Sets are written as sorted lists so snapshots are stable.
        """
        return {
            "module_id": session.module_id,
            "attempt_id": session.attempt_id,
            "student_id": session.student_id,
            "answers": {qid: list(answer) for qid, answer in session.answers.items()},
            "flagged": sorted(session.flagged),
            "time_spent": dict(session.time_spent),
            "current_question_index": session.current_question_index,
            "remaining_seconds": session.remaining_seconds,
            "submitted": session.submitted,
            "started_at": session.started_at.isoformat() if session.started_at else None,
            "ended_at": session.ended_at.isoformat() if session.ended_at else None,
            "last_updated": session.last_updated.isoformat() if session.last_updated else None,
        }

    def dict_to_session(self, data: Dict[str, Any]) -> SessionState:
        """
        Convert a stored dictionary back to SessionState.

        Raises:
            KeyError / TypeError / ValueError on malformed snapshots
        """
        started_at = datetime.fromisoformat(data["started_at"]) if data.get("started_at") else utc_now()
        ended_at = datetime.fromisoformat(data["ended_at"]) if data.get("ended_at") else None
        last_updated = datetime.fromisoformat(data["last_updated"]) if data.get("last_updated") else started_at

        answers = {str(qid): [str(v) for v in answer] for qid, answer in (data.get("answers") or {}).items()}

        return SessionState(
            module_id=data["module_id"],
            attempt_id=data["attempt_id"],
            student_id=data.get("student_id", ""),
            answers=answers,
            flagged=set(data.get("flagged") or []),
            time_spent={str(k): float(v) for k, v in (data.get("time_spent") or {}).items()},
            current_question_index=int(data.get("current_question_index", 0)),
            remaining_seconds=data.get("remaining_seconds"),
            submitted=bool(data.get("submitted", False)),
            started_at=started_at,
            ended_at=ended_at,
            last_updated=last_updated,
        )

    def get_session(self, module_id: str) -> Optional[SessionState]:
        """
        Load the snapshot for a module.

        Returns:
            SessionState or None if there is none. Corrupt snapshots are
            removed and reported as missing.
        """
        key = session_key(module_id)
        data = self.store.get_json(key)
        if data is None:
            if key in self.store:
                self.store.delete(key)
            return None

        try:
            session = self.dict_to_session(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"⚠️ [SessionManager] Dropping corrupt snapshot for {module_id}: {e}")
            self.store.delete(key)
            return None

        if session.submitted:
            # Submitted attempts are not resumable
            self.store.delete(key)
            return None
        return session

    def save_session(self, session: SessionState) -> bool:
        """
        Save a snapshot of the session.

        Returns:
            True if saved, False if the store rejected the write
        """
        session.last_updated = utc_now()
        try:
            self.store.set_json(session_key(session.module_id), self.session_to_dict(session))
            return True
        except OSError as e:
            logger.warning(f"⚠️ [SessionManager] Error saving session for {session.module_id}: {e}")
            return False

    def delete_session(self, module_id: str) -> bool:
        """
        Delete a module's snapshot.

        Returns:
            True if one existed
        """
        key = session_key(module_id)
        if key not in self.store:
            return False
        self.store.delete(key)
        logger.debug(f"[SessionManager] Deleted snapshot for {module_id}")
        return True

    def list_saved_sessions(self) -> List[SavedSession]:
        """All resumable attempts, most recently updated first."""
        saved = []
        for key in self.store.keys():
            if not key.startswith(SESSION_KEY_PREFIX):
                continue
            session = self.get_session(key[len(SESSION_KEY_PREFIX):])
            if session is None:
                continue
            saved.append(SavedSession(
                module_id=session.module_id,
                answered_count=session.answered_count(),
                flagged_count=len(session.flagged),
                remaining_seconds=session.remaining_seconds,
                last_updated=session.last_updated,
            ))
        saved.sort(key=lambda s: s.last_updated, reverse=True)
        return saved
