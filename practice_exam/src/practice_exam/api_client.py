"""
HTTP client for the remote practice API.

All grading, question generation and attempt storage happen server-side;
this client only moves JSON back and forth. Calls are blocking
(requests); async callers run them through asyncio.to_thread.
"""

import time
from typing import Any, Dict, List, Optional

import requests

from practice_exam.config import Settings
from practice_exam.logger import get_logger
from practice_exam.models import (
    AttemptSummary,
    CodeExecutionRequest,
    CodeExecutionResult,
    CodingTestCase,
    CodingValidationResult,
    ModuleWithQuestions,
    PracticeModule,
    PracticeStats,
    SubmitAttemptRequest,
)
from practice_exam.storage import InMemoryStore, KeyValueStore

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"

STATUS_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required. Please log in again.",
    403: "Access denied. You do not have permission to perform this action.",
    404: "Resource not found.",
    409: "Conflict: This resource already exists.",
    422: "Validation error. Please check your input.",
    429: "Too many requests. Please try again later.",
    500: "Server error. Please try again later.",
}


class ApiError(Exception):
    """Non-2xx response or transport failure talking to the practice API."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Optional[Any] = None):
        super().__init__(message)
        self.status = status
        self.payload = payload

    @classmethod
    def from_response(cls, response: requests.Response) -> "ApiError":
        try:
            payload = response.json()
        except ValueError:
            payload = None
        return cls(
            f"{response.request.method if response.request else 'HTTP'} {response.url} "
            f"failed with status {response.status_code}",
            status=response.status_code,
            payload=payload,
        )


def describe_api_error(error: BaseException, fallback: str = "An error occurred") -> str:
    """
    Turn an error into a message suitable for showing to a student.

    Prefers the server's own `detail` / `message` / `errors`, then a default
    for the status code, then the exception text.
    """
    if isinstance(error, ApiError):
        payload = error.payload if isinstance(error.payload, dict) else {}
        if payload.get("detail"):
            return str(payload["detail"])
        if payload.get("message"):
            return str(payload["message"])
        if isinstance(payload.get("errors"), list) and payload["errors"]:
            return ", ".join(str(e) for e in payload["errors"])
        if error.status is not None:
            return STATUS_MESSAGES.get(error.status, f"Request failed with status {error.status}.")
    return str(error) or fallback


class PracticeApiClient:
    """Bearer-authenticated JSON client for the practice endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        store: Optional[KeyValueStore] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: API root, e.g. "https://example.com/api"
            timeout: Per-request timeout in seconds
            store: Where access/refresh tokens live (in-memory if omitted)
            session: Pre-built requests session (tests inject a fake)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.store = store if store is not None else InMemoryStore()
        self.session = session or requests.Session()
        self.session.headers.setdefault("Content-Type", "application/json")

    # ==================== Auth tokens ====================

    def set_auth_tokens(self, access_token: str, refresh_token: Optional[str] = None) -> None:
        self.store.set(ACCESS_TOKEN_KEY, access_token)
        if refresh_token:
            self.store.set(REFRESH_TOKEN_KEY, refresh_token)

    def clear_auth_tokens(self) -> None:
        self.store.delete(ACCESS_TOKEN_KEY)
        self.store.delete(REFRESH_TOKEN_KEY)

    def is_authenticated(self) -> bool:
        return self.store.get(ACCESS_TOKEN_KEY) is not None

    def _auth_headers(self) -> Dict[str, str]:
        token = self.store.get(ACCESS_TOKEN_KEY)
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _refresh_access_token(self) -> bool:
        """Swap the refresh token for a new pair. Returns False if not possible."""
        refresh_token = self.store.get(REFRESH_TOKEN_KEY)
        if not refresh_token:
            return False
        try:
            data = self._request("POST", "/auth/refresh", {"refresh_token": refresh_token}, retry_auth=False)
        except ApiError as e:
            logger.warning("Token refresh failed, clearing stored tokens", data={"status": e.status})
            self.clear_auth_tokens()
            return False
        if not isinstance(data, dict) or not data.get("access_token"):
            self.clear_auth_tokens()
            return False
        self.set_auth_tokens(data["access_token"], data.get("refresh_token"))
        return True

    # ==================== Transport ====================

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
        retry_auth: bool = True,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.request(method, path)
        start = time.perf_counter()
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                params=params,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ApiError(f"{method} {path} failed: {e}") from e
        logger.response(response.status_code, path, duration=time.perf_counter() - start)

        if response.status_code == 401 and retry_auth and self._refresh_access_token():
            return self._request(method, path, body, retry_auth=False, params=params)
        if not response.ok:
            raise ApiError.from_response(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"{method} {path} returned invalid JSON", status=response.status_code) from e

    # ==================== Practice endpoints ====================

    def list_modules(self) -> List[PracticeModule]:
        """Active (non-archived) practice modules."""
        data = self._request("GET", "/practice/modules")
        items = data.get("modules", []) if isinstance(data, dict) else (data or [])
        modules = [PracticeModule.model_validate(item) for item in items]
        return [m for m in modules if not m.is_archived]

    def get_module(self, module_id: str) -> ModuleWithQuestions:
        """Module detail including its questions, fetched fresh per session."""
        data = self._request("GET", f"/practice/modules/{module_id}")
        return ModuleWithQuestions.model_validate(data)

    def sync_remaining_time(self, module_id: str, seconds_remaining: int) -> None:
        self._request("PUT", f"/practice/modules/{module_id}/time", {"remaining_seconds": int(seconds_remaining)})

    def save_progress(self, module_id: str, progress: Dict[str, Any]) -> None:
        self._request("POST", f"/practice/modules/{module_id}/progress", progress)

    def submit_attempt(self, request: SubmitAttemptRequest) -> Dict[str, Any]:
        """Submit an attempt; returns the raw result payload as sent by the server."""
        data = self._request("POST", "/practice/submit", request.model_dump(mode="json"))
        if not isinstance(data, dict):
            raise ApiError("Submit returned an unexpected payload", payload=data)
        return data

    # ==================== Coding questions ====================

    def execute_code(self, request: CodeExecutionRequest) -> CodeExecutionResult:
        """Run code in the server sandbox against optional stdin."""
        data = self._request("POST", "/practice/coding/execute", request.model_dump(exclude_none=True))
        return CodeExecutionResult.model_validate(data or {})

    def get_test_cases(self, question_id: str) -> List[CodingTestCase]:
        data = self._request("GET", f"/practice/questions/{question_id}/test-cases")
        items = data.get("test_cases", []) if isinstance(data, dict) else (data or [])
        return sorted((CodingTestCase.model_validate(item) for item in items), key=lambda tc: tc.order)

    def validate_coding_answer(self, question_id: str, code: str, language: str = "python") -> CodingValidationResult:
        """Grade code against every test case of a question, hidden ones included."""
        data = self._request(
            "POST",
            "/practice/validate-coding-answer",
            params={"question_id": question_id, "code": code, "language": language},
        )
        if not isinstance(data, dict):
            raise ApiError("Validation returned an unexpected payload", payload=data)
        return CodingValidationResult.model_validate(data)

    # ==================== History & stats ====================

    def list_job_attempts(self, job_id: str) -> List[AttemptSummary]:
        """Attempts recorded for a job assessment, as the server orders them."""
        data = self._request("GET", f"/practice/job/{job_id}/attempts")
        items = data.get("attempts", []) if isinstance(data, dict) else (data or [])
        return [AttemptSummary.model_validate(item) for item in items]

    def get_practice_stats(self) -> PracticeStats:
        data = self._request("GET", "/practice/stats")
        return PracticeStats.model_validate(data or {})


_api_client: Optional[PracticeApiClient] = None


def get_api_client(settings: Optional[Settings] = None, store: Optional[KeyValueStore] = None) -> PracticeApiClient:
    """Get or create the process-wide API client."""
    global _api_client

    if _api_client is None:
        settings = settings or Settings.from_env()
        _api_client = PracticeApiClient(settings.api_base_url, timeout=settings.api_timeout, store=store)

    return _api_client
