"""
Shared fixtures: sample modules and an in-process stand-in for the practice API.
"""

import os
import sys
import threading
import time
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "practice_exam", "src"))

from practice_exam.api_client import ApiError
from practice_exam.models import (
    AttemptSummary,
    CodeExecutionRequest,
    CodeExecutionResult,
    CodingTestCase,
    CodingValidationResult,
    ModuleWithQuestions,
    PracticeStats,
    SubmitAttemptRequest,
)


def build_module(module_id: str = "mod-1", duration_seconds: int = 1800, question_types: Optional[List[str]] = None) -> ModuleWithQuestions:
    question_types = question_types or ["mcq_single", "mcq_multi", "mcq_single", "descriptive", "coding"]
    questions = []
    for i, qtype in enumerate(question_types, start=1):
        options = [{"id": f"o{n}", "text": f"Option {n}"} for n in (1, 2, 3)] if qtype.startswith("mcq") else []
        questions.append({
            "id": f"q{i}",
            "statement": f"Question {i}",
            "type": qtype,
            "options": options,
            "tags": ["python"] if i % 2 else ["sql"],
            "difficulty": "medium",
        })
    return ModuleWithQuestions.model_validate({
        "id": module_id,
        "title": "Backend Basics",
        "role": "Backend Engineer",
        "duration_seconds": duration_seconds,
        "questions_count": len(questions),
        "question_ids": [q["id"] for q in questions],
        "questions": questions,
    })


def result_payload(request: SubmitAttemptRequest) -> Dict[str, Any]:
    results = []
    for answer in request.answers:
        correct = answer.answer == ["o1"]
        results.append({"question_id": answer.question_id, "is_correct": correct, "feedback": "ok" if correct else "review"})
    return {
        "attempt_id": request.attempt_id,
        "module_id": request.module_id,
        "score_percent": 40.0,
        "time_taken_seconds": 120,
        "weak_areas": [{"tag": "sql", "accuracy": 0.25}],
        "question_results": results,
        "grader_version": "2024.1",
    }


class FakePracticeApi:
    """Duck-typed PracticeApiClient recording every call."""

    def __init__(self, modules: Optional[List[ModuleWithQuestions]] = None):
        self.modules = {m.id: m for m in (modules or [])}
        self.submit_calls: List[SubmitAttemptRequest] = []
        self.time_syncs: List[tuple] = []
        self.progress_saves: List[tuple] = []
        self.submit_failures = 0
        self.submit_delay = 0.0
        self.fail_time_sync = False
        self.fail_progress = False
        self.on_submit = None
        self.submit_payload: Optional[Dict[str, Any]] = None
        self.executions: List[CodeExecutionRequest] = []
        self.validations: List[tuple] = []
        self.fail_execute = False
        self.test_cases: Dict[str, List[CodingTestCase]] = {}
        self.job_attempts: Dict[str, List[AttemptSummary]] = {}
        self._lock = threading.Lock()

    def list_modules(self):
        return [m for m in self.modules.values() if not m.is_archived]

    def get_module(self, module_id: str) -> ModuleWithQuestions:
        if module_id not in self.modules:
            raise ApiError("not found", status=404, payload={"detail": "Module not found"})
        return self.modules[module_id]

    def sync_remaining_time(self, module_id: str, seconds_remaining: int) -> None:
        self.time_syncs.append((module_id, seconds_remaining))
        if self.fail_time_sync:
            raise ApiError("sync failed", status=503)

    def save_progress(self, module_id: str, progress: Dict[str, Any]) -> None:
        self.progress_saves.append((module_id, progress))
        if self.fail_progress:
            raise ApiError("progress failed", status=500)

    def submit_attempt(self, request: SubmitAttemptRequest) -> Dict[str, Any]:
        with self._lock:
            self.submit_calls.append(request)
            failing = self.submit_failures > 0
            if failing:
                self.submit_failures -= 1
        if self.on_submit is not None:
            self.on_submit(request)
        if self.submit_delay:
            time.sleep(self.submit_delay)
        if failing:
            raise ApiError("POST /practice/submit failed: connection reset")
        if self.submit_payload is not None:
            return self.submit_payload
        return result_payload(request)

    def execute_code(self, request: CodeExecutionRequest) -> CodeExecutionResult:
        self.executions.append(request)
        if self.fail_execute:
            raise ApiError("sandbox unavailable", status=503, payload={"detail": "Sandbox is busy"})
        return CodeExecutionResult(stdout=f"{len(request.code)} bytes\n", runtime=4.2, memory=1024, status="success")

    def get_test_cases(self, question_id: str) -> List[CodingTestCase]:
        return list(self.test_cases.get(question_id, []))

    def validate_coding_answer(self, question_id: str, code: str, language: str = "python") -> CodingValidationResult:
        self.validations.append((question_id, code, language))
        cases = self.test_cases.get(question_id, [])
        passed = "return" in code
        return CodingValidationResult.model_validate({
            "valid": passed,
            "message": "All tests passed" if passed else "Some tests failed",
            "test_results": [
                {"test_case_id": tc.id, "input": tc.input_data, "expected_output": tc.expected_output,
                 "actual_output": tc.expected_output if passed else "", "passed": passed,
                 "points": tc.points, "is_hidden": tc.is_hidden}
                for tc in cases
            ],
            "total_tests": len(cases),
            "passed_tests": len(cases) if passed else 0,
        })

    def list_job_attempts(self, job_id: str) -> List[AttemptSummary]:
        return list(self.job_attempts.get(job_id, []))

    def get_practice_stats(self) -> PracticeStats:
        return PracticeStats(total_attempts=len(self.submit_calls), average_score=40.0, best_score=40.0)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def module():
    return build_module()


@pytest.fixture
def fake_api(module):
    return FakePracticeApi([module])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_module():
    return build_module


@pytest.fixture
def make_api():
    return FakePracticeApi
