"""
Unit Tests for Practice API Client

HTTP is faked at the requests.Session boundary.
"""

import json
import os
import sys

import pytest
import requests

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "practice_exam", "src"))

from practice_exam import api_client as api_module
from practice_exam.api_client import ApiError, PracticeApiClient, describe_api_error
from practice_exam.config import Settings
from practice_exam.models import CodeExecutionRequest, QuestionAnswer, SubmitAttemptRequest
from practice_exam.storage import InMemoryStore

BASE_URL = "http://api.test/api"


def make_response(status: int, body=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.url = BASE_URL
    response._content = b"" if body is None else json.dumps(body).encode("utf-8")
    return response


class FakeSession:
    """Replays canned responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.headers = {}

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        self.calls.append({
            "method": method, "url": url, "json": json, "params": params,
            "headers": headers or {}, "timeout": timeout,
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_client(*responses, store=None):
    session = FakeSession(*responses)
    client = PracticeApiClient(BASE_URL + "/", timeout=5, store=store or InMemoryStore(), session=session)
    return client, session


MODULE = {
    "id": "m1",
    "title": "SQL",
    "duration_seconds": 600,
    "questions": [{"id": "q1", "statement": "Pick one", "type": "mcq_single",
                   "options": [{"id": "o1", "text": "A"}]}],
}


class TestPracticeEndpoints:
    """Request shapes and response parsing."""

    def test_list_modules_drops_archived(self):
        client, session = make_client(make_response(200, [
            {"id": "m1", "title": "SQL", "duration_seconds": 600},
            {"id": "m2", "title": "Old", "duration_seconds": 600, "is_archived": True},
        ]))

        modules = client.list_modules()

        assert [m.id for m in modules] == ["m1"]
        assert session.calls[0]["method"] == "GET"
        assert session.calls[0]["url"] == f"{BASE_URL}/practice/modules"
        assert session.calls[0]["timeout"] == 5

    def test_list_modules_accepts_wrapped_payload(self):
        client, _ = make_client(make_response(200, {"modules": [{"id": "m1", "title": "SQL", "duration_seconds": 60}]}))
        assert [m.id for m in client.list_modules()] == ["m1"]

    def test_get_module_includes_questions(self):
        client, session = make_client(make_response(200, MODULE))

        module = client.get_module("m1")

        assert module.questions[0].options[0].id == "o1"
        assert session.calls[0]["url"].endswith("/practice/modules/m1")

    def test_sync_remaining_time(self):
        client, session = make_client(make_response(204))

        assert client.sync_remaining_time("m1", 540) is None
        assert session.calls[0]["method"] == "PUT"
        assert session.calls[0]["url"].endswith("/practice/modules/m1/time")
        assert session.calls[0]["json"] == {"remaining_seconds": 540}

    def test_save_progress(self):
        client, session = make_client(make_response(200, {"ok": True}))
        client.save_progress("m1", {"answers": []})

        assert session.calls[0]["method"] == "POST"
        assert session.calls[0]["json"] == {"answers": []}

    def test_submit_returns_raw_payload(self):
        server_payload = {"module_id": "m1", "score_percent": 75.0, "question_results": [], "extra": {"k": 1}}
        client, session = make_client(make_response(200, server_payload))
        request = SubmitAttemptRequest(
            module_id="m1",
            student_id="s1",
            attempt_id="attempt_1",
            answers=[QuestionAnswer(question_id="q1", answer=["o1"], time_spent=12)],
            flagged_question_ids=["q1"],
            started_at="2024-01-01T00:00:00+00:00",
            ended_at="2024-01-01T00:10:00+00:00",
        )

        assert client.submit_attempt(request) == server_payload
        body = session.calls[0]["json"]
        assert body["answers"] == [{"question_id": "q1", "answer": ["o1"], "time_spent": 12}]
        assert body["flagged_question_ids"] == ["q1"]

    def test_submit_rejects_non_object_payload(self):
        client, _ = make_client(make_response(200, ["unexpected"]))

        with pytest.raises(ApiError):
            client.submit_attempt(SubmitAttemptRequest(
                module_id="m1", student_id="s1", attempt_id="a", answers=[],
                started_at="2024-01-01T00:00:00", ended_at="2024-01-01T00:01:00",
            ))


class TestCodingEndpoints:
    """Sandbox runs, test cases and graded validation."""

    def test_execute_code(self):
        client, session = make_client(make_response(200, {
            "stdout": "3\n", "stderr": "", "runtime": 12.5, "memory": 2048, "status": "success",
        }))

        result = client.execute_code(CodeExecutionRequest(code="print(1 + 2)", language="python", question_id="q5"))

        assert result.succeeded
        assert result.stdout == "3\n"
        assert session.calls[0]["url"] == f"{BASE_URL}/practice/coding/execute"
        assert session.calls[0]["json"] == {"code": "print(1 + 2)", "language": "python", "question_id": "q5"}

    def test_get_test_cases_sorted_by_order(self):
        client, session = make_client(make_response(200, [
            {"id": 7, "input_data": "2", "expected_output": "4", "order": 1, "is_hidden": True},
            {"id": 3, "input_data": "1", "expected_output": "1", "order": 0},
        ]))

        cases = client.get_test_cases("q5")

        assert [c.id for c in cases] == ["3", "7"]
        assert cases[1].is_hidden is True
        assert session.calls[0]["url"].endswith("/practice/questions/q5/test-cases")

    def test_validate_sends_query_params(self):
        client, session = make_client(make_response(200, {
            "valid": True,
            "message": "All tests passed",
            "test_results": [{"test_case_id": 3, "input": "1", "expected_output": "1",
                              "actual_output": "1", "passed": True, "points": 5, "is_hidden": False}],
            "total_tests": 1,
            "passed_tests": 1,
        }))

        verdict = client.validate_coding_answer("q5", "print(input())", "python")

        assert verdict.all_passed
        assert verdict.test_results[0].test_case_id == "3"
        assert session.calls[0]["method"] == "POST"
        assert session.calls[0]["url"].endswith("/practice/validate-coding-answer")
        assert session.calls[0]["params"] == {"question_id": "q5", "code": "print(input())", "language": "python"}
        assert session.calls[0]["json"] is None

    def test_validate_rejects_non_object_payload(self):
        client, _ = make_client(make_response(200, []))

        with pytest.raises(ApiError):
            client.validate_coding_answer("q5", "pass")


class TestHistoryEndpoints:

    def test_list_job_attempts(self):
        client, session = make_client(make_response(200, {"attempts": [
            {"id": 11, "module_id": "m1", "module_title": "SQL", "score_percent": 80.0},
        ]}))

        attempts = client.list_job_attempts("job-9")

        assert attempts[0].id == "11"
        assert attempts[0].score_percent == 80.0
        assert session.calls[0]["url"].endswith("/practice/job/job-9/attempts")

    def test_practice_stats_reads_camel_case(self):
        client, session = make_client(make_response(200, {
            "totalAttempts": 15,
            "averageScore": 72.5,
            "bestScore": 95.0,
            "totalTimeSpent": 7200,
            "weakAreas": [{"tag": "algorithms", "accuracy": 65.0}],
            "recentAttempts": [{"moduleId": "m1", "moduleTitle": "SQL", "score": 85.0, "date": "2024-01-15"}],
        }))

        stats = client.get_practice_stats()

        assert stats.total_attempts == 15
        assert stats.best_score == 95.0
        assert stats.weak_areas[0].tag == "algorithms"
        assert stats.recent_attempts[0].module_id == "m1"
        assert session.calls[0]["url"].endswith("/practice/stats")


class TestErrors:
    """Failures and their messages."""

    def test_non_2xx_raises_with_payload(self):
        client, _ = make_client(make_response(422, {"detail": "answers must be a list"}))

        with pytest.raises(ApiError) as exc_info:
            client.list_modules()

        assert exc_info.value.status == 422
        assert describe_api_error(exc_info.value) == "answers must be a list"

    def test_transport_error_becomes_api_error(self):
        client, _ = make_client(requests.exceptions.ConnectionError("refused"))

        with pytest.raises(ApiError) as exc_info:
            client.list_modules()

        assert exc_info.value.status is None
        assert "refused" in str(exc_info.value)

    @pytest.mark.parametrize("payload,status,expected", [
        ({"message": "Module closed"}, 400, "Module closed"),
        ({"errors": ["a", "b"]}, 400, "a, b"),
        (None, 404, "Resource not found."),
        (None, 418, "Request failed with status 418."),
    ])
    def test_describe_api_error(self, payload, status, expected):
        assert describe_api_error(ApiError("boom", status=status, payload=payload)) == expected

    def test_describe_plain_exception(self):
        assert describe_api_error(RuntimeError("offline")) == "offline"
        assert describe_api_error(RuntimeError(), fallback="Try again") == "Try again"


class TestAuth:
    """Bearer tokens and refresh."""

    def test_sends_bearer_token(self):
        store = InMemoryStore()
        client, session = make_client(make_response(200, []), store=store)
        client.set_auth_tokens("access-1", "refresh-1")

        client.list_modules()

        assert session.calls[0]["headers"] == {"Authorization": "Bearer access-1"}
        assert client.is_authenticated()

    def test_401_refreshes_and_retries_once(self):
        store = InMemoryStore()
        client, session = make_client(
            make_response(401, {"detail": "expired"}),
            make_response(200, {"access_token": "access-2", "refresh_token": "refresh-2"}),
            make_response(200, []),
            store=store,
        )
        client.set_auth_tokens("access-1", "refresh-1")

        assert client.list_modules() == []

        assert [c["url"].rsplit("/api", 1)[1] for c in session.calls] == [
            "/practice/modules", "/auth/refresh", "/practice/modules",
        ]
        assert session.calls[1]["json"] == {"refresh_token": "refresh-1"}
        assert session.calls[2]["headers"] == {"Authorization": "Bearer access-2"}
        assert store.get("refresh_token") == "refresh-2"

    def test_failed_refresh_clears_tokens(self):
        store = InMemoryStore()
        client, _ = make_client(
            make_response(401, {"detail": "expired"}),
            make_response(401, {"detail": "refresh expired"}),
            store=store,
        )
        client.set_auth_tokens("access-1", "refresh-1")

        with pytest.raises(ApiError) as exc_info:
            client.list_modules()

        assert exc_info.value.status == 401
        assert not client.is_authenticated()
        assert store.get("refresh_token") is None

    def test_401_without_refresh_token_raises(self):
        client, session = make_client(make_response(401))

        with pytest.raises(ApiError):
            client.list_modules()
        assert len(session.calls) == 1


class TestGetApiClient:

    def test_singleton(self, monkeypatch):
        monkeypatch.setattr(api_module, "_api_client", None)
        settings = Settings(api_base_url="http://example.test/api", api_timeout=7)

        first = api_module.get_api_client(settings)
        second = api_module.get_api_client()

        assert first is second
        assert first.base_url == "http://example.test/api"
        assert first.timeout == 7
