"""
Session State Data Model

Defines the SessionState dataclass holding one in-progress exam attempt.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionState:
    """Answers, flags and timing for one attempt at one module."""
    module_id: str
    attempt_id: str
    student_id: str
    answers: Dict[str, List[str]] = field(default_factory=dict)  # question_id -> ordered option ids / text
    flagged: Set[str] = field(default_factory=set)
    time_spent: Dict[str, float] = field(default_factory=dict)  # question_id -> seconds
    current_question_index: int = 0
    remaining_seconds: Optional[int] = None
    submitted: bool = False
    started_at: datetime = field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    last_updated: datetime = field(default_factory=utc_now)

    def is_answered(self, question_id: str) -> bool:
        return len(self.answers.get(question_id) or []) > 0

    def answered_count(self) -> int:
        return sum(1 for qid in self.answers if self.is_answered(qid))
