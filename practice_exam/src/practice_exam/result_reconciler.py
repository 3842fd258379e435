"""
Result reconciliation and client-side result cache.

The practice service is not consistent about how it marks a question
correct, so results are normalised into one outcome per question before
display. Submitted results are cached so a finished module shows its result
instead of restarting.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from practice_exam.storage import KeyValueStore

logger = logging.getLogger(__name__)

SUBMITTED_MODULES_KEY = "submitted_practice_modules"
RESULT_KEY_PREFIX = "practice_result_"
CLEAR_CACHE_FLAG = "clear_practice_cache"


def result_key(module_id: str) -> str:
    return f"{RESULT_KEY_PREFIX}{module_id}"


@dataclass(frozen=True)
class QuestionOutcome:
    correct: bool
    score: float
    max_score: float
    feedback: Optional[str] = None


def normalize_question_results(payload: Mapping[str, Any]) -> Dict[str, QuestionOutcome]:
    """
    Map a result payload's `question_results` to one outcome per question.

    `is_correct` takes precedence over `correct`; `max_score` defaults to 1;
    a missing `score` is `max_score` when correct, else 0.
    """
    outcomes: Dict[str, QuestionOutcome] = {}
    entries = payload.get("question_results")
    if not isinstance(entries, list):
        return outcomes
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("question_id") is None:
            continue
        question_id = entry["question_id"]

        if entry.get("is_correct") is not None:
            correct = bool(entry["is_correct"])
        else:
            correct = bool(entry.get("correct"))

        max_score = entry.get("max_score")
        max_score = 1.0 if max_score is None else float(max_score)
        score = entry.get("score")
        if score is None:
            score = max_score if correct else 0.0

        outcomes[str(question_id)] = QuestionOutcome(
            correct=correct,
            score=float(score),
            max_score=max_score,
            feedback=entry.get("feedback"),
        )
    return outcomes


class ResultStore:
    """Persists which modules were submitted and their last results."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def submitted_modules(self) -> List[str]:
        modules = self.store.get_json(SUBMITTED_MODULES_KEY, default=[])
        if not isinstance(modules, list):
            logger.warning("⚠️ [ResultStore] Submitted-module list is malformed, ignoring it")
            return []
        return [str(m) for m in modules]

    def is_submitted(self, module_id: str) -> bool:
        return module_id in self.submitted_modules()

    def record(self, module_id: str, payload: Dict[str, Any]) -> None:
        """Cache a result payload verbatim and mark the module submitted."""
        self.store.set_json(result_key(module_id), payload)
        modules = self.submitted_modules()
        if module_id not in modules:
            modules.append(module_id)
            self.store.set_json(SUBMITTED_MODULES_KEY, modules)
        logger.info(f"💾 [ResultStore] Recorded result for {module_id}")

    def load(self, module_id: str) -> Optional[Dict[str, Any]]:
        payload = self.store.get_json(result_key(module_id))
        return payload if isinstance(payload, dict) else None

    def forget(self, module_id: str) -> None:
        """Drop a module's cached result so it can be retaken."""
        self.store.delete(result_key(module_id))
        modules = self.submitted_modules()
        if module_id in modules:
            modules.remove(module_id)
            self.store.set_json(SUBMITTED_MODULES_KEY, modules)

    def run_maintenance(self) -> bool:
        """
        Wipe all cached results if the one-shot clear flag is set.

        Returns:
            True if a wipe happened
        """
        if CLEAR_CACHE_FLAG not in self.store:
            return False

        removed = 0
        for key in list(self.store.keys()):
            if key.startswith(RESULT_KEY_PREFIX):
                self.store.delete(key)
                removed += 1
        self.store.delete(SUBMITTED_MODULES_KEY)
        self.store.delete(CLEAR_CACHE_FLAG)
        logger.info(f"🧹 [ResultStore] Cleared {removed} cached practice results")
        return True
