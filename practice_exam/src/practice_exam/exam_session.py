"""
Exam Session Controller

Owns one attempt at one practice module: navigation, answers, flags,
per-question time, the countdown, fullscreen enforcement and submission.
Everything runs on a single asyncio event loop; blocking API calls are
pushed to worker threads.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from practice_exam.api_client import PracticeApiClient, describe_api_error
from practice_exam.config import Settings
from practice_exam.exam_timer import ExamTimer
from practice_exam.fullscreen import FullscreenCapability, FullscreenGuard
from practice_exam.models import (
    CodeExecutionRequest,
    CodeExecutionResult,
    CodingTestCase,
    CodingValidationResult,
    ModuleWithQuestions,
    Question,
    QuestionAnswer,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
)
from practice_exam.result_reconciler import QuestionOutcome, ResultStore, normalize_question_results
from practice_exam.session_manager import SessionManager
from practice_exam.session_state import SessionState, utc_now

logger = logging.getLogger(__name__)

REVIEW_WARNING = "No answer selected, marked for review"
CODE_LANGUAGES = ("python", "java", "cpp", "javascript")


class ModuleUnavailableError(Exception):
    """Module does not exist or has no questions to attempt."""


class SubmissionResultError(Exception):
    """The backend accepted the attempt but its result payload could not be read."""

    def __init__(self, module_id: str, payload: Dict[str, Any], reason: str):
        super().__init__(f"Attempt for {module_id} was submitted but its result could not be read: {reason}")
        self.module_id = module_id
        self.payload = payload


class QuestionStatus(str, Enum):
    NOT_VISITED = "not-visited"
    ANSWERED = "answered"
    FLAGGED = "flagged"
    MARKED_ANSWERED = "marked-answered"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class PaletteEntry:
    index: int
    question_id: str
    status: QuestionStatus
    current: bool


def new_attempt_id() -> str:
    return f"attempt_{int(time.time() * 1000)}"


class ExamSession:
    """
    One practice-exam attempt.

    Usage:
        async with ExamSession(module, api, student_id, fullscreen=cap) as session:
            session.select_option(qid, "o1")
            result = await session.submit()
    """

    def __init__(
        self,
        module: ModuleWithQuestions,
        api: PracticeApiClient,
        student_id: str,
        results: Optional[ResultStore] = None,
        sessions: Optional[SessionManager] = None,
        fullscreen: Optional[FullscreenCapability] = None,
        settings: Optional[Settings] = None,
        on_abandon: Optional[Callable[[Exception], Any]] = None,
        resume: bool = True,
        tick_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            module: Module with its questions, fetched for this session
            api: Practice API client
            student_id: Id of the student taking the exam
            results: Where submitted results are cached
            sessions: Snapshot manager; enables resume when given
            fullscreen: Fullscreen capability; no enforcement when omitted
            settings: Engine settings (environment defaults when omitted)
            on_abandon: Called with the error when a forced submission fails
            resume: Continue from a saved snapshot if one exists
            tick_interval: Real seconds per countdown tick
            clock: Monotonic clock for per-question time
        """
        if not module.questions:
            raise ModuleUnavailableError(f"Module {module.id} has no questions")

        self.module = module
        self.api = api
        self.results = results
        self.sessions = sessions
        self.settings = settings or Settings()
        self.on_abandon = on_abandon
        self._clock = clock
        self._questions: Dict[str, Question] = {q.id: q for q in module.questions}

        self.state = self._load_or_create_state(student_id, resume)

        remaining = self.state.remaining_seconds
        self.timer = ExamTimer(
            remaining if remaining is not None else module.duration_seconds,
            on_expire=self._on_time_up,
            on_sync=self._sync_remaining_time,
            sync_interval=self.settings.time_sync_interval,
            tick_interval=tick_interval,
            drift_corrected=self.settings.timer_drift_corrected,
            clock=clock,
        )

        self.guard: Optional[FullscreenGuard] = None
        if fullscreen is not None and self.settings.require_fullscreen:
            self.guard = FullscreenGuard(
                fullscreen,
                on_exit=self._on_fullscreen_exit,
                is_live=self._is_live,
                exit_timeout=self.settings.fullscreen_exit_timeout,
            )

        self.started = False
        self.closed = False
        self._entered_at: Optional[float] = None
        self._submit_task: Optional[asyncio.Future] = None
        self._result: Optional[SubmitAttemptResponse] = None
        self._result_payload: Optional[Dict[str, Any]] = None
        self._result_error: Optional[SubmissionResultError] = None
        self._background: Set[asyncio.Task] = set()
        self.code_runs: Dict[str, List[CodeExecutionResult]] = {}
        self.validations: Dict[str, CodingValidationResult] = {}

    def _load_or_create_state(self, student_id: str, resume: bool) -> SessionState:
        if self.sessions is not None and resume:
            saved = self.sessions.get_session(self.module.id)
            if saved is not None:
                saved.current_question_index = min(
                    max(saved.current_question_index, 0), len(self.module.questions) - 1
                )
                logger.info(f"🔁 [ExamSession] Resuming {self.module.id} ({saved.answered_count()} answered)")
                return saved
        if self.sessions is not None and not resume:
            self.sessions.delete_session(self.module.id)

        return SessionState(module_id=self.module.id, attempt_id=new_attempt_id(), student_id=student_id)

    # ==================== Read-only views ====================

    @property
    def questions(self) -> List[Question]:
        return self.module.questions

    @property
    def total_questions(self) -> int:
        return len(self.module.questions)

    @property
    def current_index(self) -> int:
        return self.state.current_question_index

    @property
    def current_question(self) -> Question:
        return self.module.questions[self.state.current_question_index]

    @property
    def submitted(self) -> bool:
        return self.state.submitted

    @property
    def submitting(self) -> bool:
        return self._submit_task is not None and not self.state.submitted

    @property
    def result(self) -> Optional[SubmitAttemptResponse]:
        return self._result

    @property
    def outcomes(self) -> Dict[str, QuestionOutcome]:
        """Per-question outcomes of the submitted attempt (empty before)."""
        if self._result_payload is None:
            return {}
        return normalize_question_results(self._result_payload)

    @property
    def fullscreen_warning(self) -> Optional[str]:
        return self.guard.warning if self.guard else None

    def answer_for(self, question_id: str) -> List[str]:
        return list(self.state.answers.get(question_id, []))

    def is_flagged(self, question_id: str) -> bool:
        return question_id in self.state.flagged

    def status_of(self, question_id: str) -> QuestionStatus:
        if self.state.submitted:
            return QuestionStatus.SUBMITTED
        flagged = question_id in self.state.flagged
        answered = self.state.is_answered(question_id)
        if flagged and answered:
            return QuestionStatus.MARKED_ANSWERED
        if flagged:
            return QuestionStatus.FLAGGED
        if answered:
            return QuestionStatus.ANSWERED
        return QuestionStatus.NOT_VISITED

    def palette(self) -> List[PaletteEntry]:
        return [
            PaletteEntry(
                index=i,
                question_id=q.id,
                status=self.status_of(q.id),
                current=i == self.state.current_question_index,
            )
            for i, q in enumerate(self.module.questions)
        ]

    # ==================== Navigation ====================

    def select_question(self, index: int) -> bool:
        """Jump to a question. Out-of-range indexes are ignored."""
        if not isinstance(index, int) or isinstance(index, bool):
            return False
        if index < 0 or index >= self.total_questions:
            logger.debug(f"[ExamSession] Ignoring out-of-range question index {index}")
            return False
        if index == self.state.current_question_index:
            return True

        self._account_time()
        self.state.current_question_index = index
        self._persist()
        return True

    def next_question(self) -> bool:
        return self.select_question(self.state.current_question_index + 1)

    def previous_question(self) -> bool:
        return self.select_question(self.state.current_question_index - 1)

    # ==================== Answers & flags ====================

    def _frozen(self) -> bool:
        # In-flight submissions already captured the answers they send
        return self.state.submitted or self._submit_task is not None

    def set_answer(self, question_id: str, answer: List[str]) -> bool:
        """Replace the stored answer. No-op once submitted."""
        if self._frozen():
            logger.debug(f"[ExamSession] Ignoring answer for {question_id}: session is submitted")
            return False
        self.state.answers[question_id] = list(answer)
        self._persist()
        return True

    def clear_answer(self, question_id: str) -> bool:
        return self.set_answer(question_id, [])

    def select_option(self, question_id: str, option_id: str) -> bool:
        """
        Pick an option the way the question type expects.

        Single choice replaces the answer; multiple choice toggles the option
        and keeps the remaining selections in the order they were made.
        """
        question = self._questions.get(question_id)
        if question is None or question.is_free_text:
            logger.debug(f"[ExamSession] {question_id} does not take options")
            return False

        if question.type == "mcq_multi":
            current = self.answer_for(question_id)
            if option_id in current:
                current.remove(option_id)
            else:
                current.append(option_id)
            return self.set_answer(question_id, current)

        return self.set_answer(question_id, [option_id])

    def set_text_answer(self, question_id: str, text: str) -> bool:
        """Answer a descriptive or coding question. Blank text clears it."""
        question = self._questions.get(question_id)
        if question is None or not question.is_free_text:
            logger.debug(f"[ExamSession] {question_id} does not take a text answer")
            return False
        return self.set_answer(question_id, [text] if text and text.strip() else [])

    def toggle_flag(self, question_id: str) -> bool:
        if self._frozen():
            return False
        if question_id in self.state.flagged:
            self.state.flagged.discard(question_id)
        else:
            self.state.flagged.add(question_id)
        self._persist()
        return True

    def mark_for_review(self, question_id: Optional[str] = None) -> Optional[str]:
        """
        Flag a question (never unflags) and move on to the next one.

        Returns:
            A warning for the student when the question has no answer
        """
        if self._frozen():
            return None
        question_id = question_id or self.current_question.id
        self.state.flagged.add(question_id)
        self._persist()

        warning = None if self.state.is_answered(question_id) else REVIEW_WARNING
        self.next_question()
        return warning

    # ==================== Time accounting ====================

    def _account_time(self) -> None:
        if self._entered_at is None or self.state.submitted:
            return
        now = self._clock()
        question_id = self.current_question.id
        self.state.time_spent[question_id] = self.state.time_spent.get(question_id, 0.0) + (now - self._entered_at)
        self._entered_at = now

    def add_time_spent(self, question_id: str, seconds: float) -> None:
        if self.state.submitted or seconds <= 0:
            return
        self.state.time_spent[question_id] = self.state.time_spent.get(question_id, 0.0) + seconds

    def time_spent_on(self, question_id: str) -> float:
        spent = self.state.time_spent.get(question_id, 0.0)
        if self._entered_at is not None and not self.state.submitted and question_id == self.current_question.id:
            spent += self._clock() - self._entered_at
        return spent

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Enter fullscreen (if enforced) and start the countdown."""
        if self.started:
            return
        if self.state.submitted:
            raise RuntimeError("Cannot start a submitted session")

        self.started = True
        self._entered_at = self._clock()
        if self.guard is not None:
            engaged = await self.guard.engage()
            if not engaged:
                logger.warning(f"⚠️ [ExamSession] Continuing {self.module.id} without fullscreen")
        self.timer.start()
        logger.info(f"📝 [ExamSession] Started {self.module.id} ({self.total_questions} questions)")

    async def close(self) -> None:
        """
        Stop the countdown, cancel background work and release fullscreen.

        A submission already in flight (manual or forced) is allowed to
        finish first so its result is recorded.
        """
        if self.closed:
            return
        self.closed = True
        await self._settle_submission()
        self._account_time()
        self._entered_at = None
        await self.timer.stop()

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        if self.guard is not None:
            await self.guard.release()
        self._persist()
        logger.debug(f"[ExamSession] Closed {self.module.id}")

    async def _settle_submission(self) -> None:
        current = asyncio.current_task()
        in_flight = [
            task
            for task in (self.guard.pending if self.guard else None, self._submit_task)
            if task is not None and task is not current and not task.done()
        ]
        if not in_flight:
            return
        logger.info(f"⏳ [ExamSession] Waiting for in-flight submission of {self.module.id}")
        # Shielded so cancelling close() does not cancel the submission itself
        await asyncio.gather(*(asyncio.shield(task) for task in in_flight), return_exceptions=True)

    async def __aenter__(self) -> "ExamSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _is_live(self) -> bool:
        return self.started and not self.closed and not self.state.submitted and self._submit_task is None

    # ==================== Persistence ====================

    def _persist(self) -> None:
        if self.sessions is None or self.state.submitted:
            return
        self.state.remaining_seconds = self.timer.remaining
        self.sessions.save_session(self.state)

    def _progress_payload(self) -> Dict[str, Any]:
        return {
            "answers": [a.model_dump() for a in self._collect_answers()],
            "flagged_question_ids": sorted(self.state.flagged),
            "current_question_index": self.state.current_question_index,
            "remaining_seconds": self.timer.remaining,
        }

    async def save_progress(self) -> bool:
        """
        Push in-progress answers to the backend. Best-effort.

        Returns:
            True if the backend accepted them
        """
        if self.state.submitted:
            return False
        self._account_time()
        self._persist()
        try:
            await asyncio.to_thread(self.api.save_progress, self.module.id, self._progress_payload())
            logger.info(f"💾 [ExamSession] Progress saved for {self.module.id}")
            return True
        except Exception as e:
            logger.warning(f"⚠️ [ExamSession] Could not save progress for {self.module.id}: {e}")
            return False

    def save_progress_in_background(self) -> asyncio.Task:
        """Fire-and-forget `save_progress`, cancelled on close."""
        task = asyncio.create_task(self.save_progress())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _sync_remaining_time(self, remaining: int) -> None:
        self.state.remaining_seconds = remaining
        self._persist()
        await asyncio.to_thread(self.api.sync_remaining_time, self.module.id, remaining)

    # ==================== Coding questions ====================

    def _coding_question(self, question_id: str, language: Optional[str] = None) -> Question:
        question = self._questions.get(question_id)
        if question is None or question.type != "coding":
            raise ValueError(f"{question_id} is not a coding question in {self.module.id}")
        if language is not None and language not in CODE_LANGUAGES:
            raise ValueError(f"Unsupported language {language!r}; expected one of {', '.join(CODE_LANGUAGES)}")
        return question

    def _code_for(self, question_id: str, code: Optional[str]) -> str:
        if code is not None:
            return code
        answer = self.state.answers.get(question_id) or [""]
        return answer[0]

    async def run_code(
        self,
        question_id: str,
        code: Optional[str] = None,
        language: str = "python",
        stdin: Optional[str] = None,
    ) -> CodeExecutionResult:
        """
        Run code for a coding question in the backend sandbox.

        Runs the stored answer unless `code` is given. Execution failures come
        back as an `error` result instead of raising so they can be shown next
        to the editor; every run is kept in `code_runs`.
        """
        self._coding_question(question_id, language)
        code = self._code_for(question_id, code)
        if not code.strip():
            return CodeExecutionResult(stderr="No code to execute", status="error")

        request = CodeExecutionRequest(code=code, language=language, input=stdin, question_id=question_id)
        try:
            result = await asyncio.to_thread(self.api.execute_code, request)
        except Exception as e:
            logger.warning(f"⚠️ [ExamSession] Code execution failed for {question_id}: {e}")
            result = CodeExecutionResult(stderr=f"Execution failed: {describe_api_error(e)}", status="error")

        self.code_runs.setdefault(question_id, []).append(result)
        return result

    async def get_test_cases(self, question_id: str, include_hidden: bool = False) -> List[CodingTestCase]:
        """Test cases of a coding question, hidden ones left out by default."""
        self._coding_question(question_id)
        cases = await asyncio.to_thread(self.api.get_test_cases, question_id)
        return [tc for tc in cases if include_hidden or not tc.is_hidden]

    async def validate_code(
        self,
        question_id: str,
        code: Optional[str] = None,
        language: str = "python",
    ) -> CodingValidationResult:
        """
        Grade code against all of the question's test cases.

        The verdict is informational and kept in `validations`; it does not
        change the stored answer or the submission.

        Raises:
            ValueError: Not a coding question, unknown language or no code
            ApiError: Backend failure
        """
        self._coding_question(question_id, language)
        code = self._code_for(question_id, code)
        if not code.strip():
            raise ValueError("No code to validate")

        verdict = await asyncio.to_thread(self.api.validate_coding_answer, question_id, code, language)
        self.validations[question_id] = verdict
        logger.info(
            f"🧪 [ExamSession] {question_id}: {verdict.passed_tests}/{verdict.total_tests} test cases passed"
        )
        return verdict

    # ==================== Submission ====================

    def _collect_answers(self) -> List[QuestionAnswer]:
        return [
            QuestionAnswer(
                question_id=q.id,
                answer=list(self.state.answers[q.id]),
                time_spent=int(round(self.state.time_spent.get(q.id, 0.0))),
            )
            for q in self.module.questions
            if q.id in self.state.answers
        ]

    def _build_request(self) -> SubmitAttemptRequest:
        return SubmitAttemptRequest(
            module_id=self.module.id,
            student_id=self.state.student_id,
            attempt_id=self.state.attempt_id,
            answers=self._collect_answers(),
            flagged_question_ids=sorted(self.state.flagged),
            started_at=self.state.started_at.isoformat(),
            ended_at=utc_now().isoformat(),
        )

    async def submit(self) -> SubmitAttemptResponse:
        """
        Submit the attempt exactly once.

        Concurrent callers share one backend call; later callers get the
        cached result. On failure the error propagates and the session stays
        open for another try.

        Raises:
            SubmissionResultError: The backend accepted the attempt but sent
                a result that does not parse; the session counts as submitted
        """
        if self._result is not None:
            return self._result
        if self._result_error is not None:
            raise self._result_error
        if self._submit_task is None:
            self._submit_task = asyncio.ensure_future(self._do_submit())
        return await asyncio.shield(self._submit_task)

    async def _do_submit(self) -> SubmitAttemptResponse:
        try:
            self._account_time()
            if self.guard is not None:
                await self.guard.exit_quietly()

            request = self._build_request()
            logger.info(f"📤 [ExamSession] Submitting {self.module.id} ({len(request.answers)} answers)")
            try:
                payload = await asyncio.to_thread(self.api.submit_attempt, request)
            except Exception as e:
                logger.error(f"❌ [ExamSession] Submission failed for {self.module.id}: {e}")
                raise
        except BaseException:
            # Nothing reached the backend (or it failed): reopen for another try
            self._submit_task = None
            raise

        self._record_submission(payload)
        try:
            self._result = SubmitAttemptResponse.model_validate(payload)
        except ValidationError as e:
            self._result_error = SubmissionResultError(self.module.id, payload, f"{e.error_count()} invalid field(s)")
            logger.error(f"❌ [ExamSession] {self._result_error}")

        if not self.timer.expired:
            await self.timer.stop()
        if self._result_error is not None:
            raise self._result_error

        logger.info(f"✅ [ExamSession] Submitted {self.module.id}: {self._result.score_percent:.1f}%")
        return self._result

    def _record_submission(self, payload: Dict[str, Any]) -> None:
        """The backend has the attempt: close it locally and cache the raw result."""
        self.state.submitted = True
        self.state.ended_at = utc_now()
        self._entered_at = None
        self._result_payload = payload

        if self.results is not None:
            self.results.record(self.module.id, payload)
        if self.sessions is not None:
            self.sessions.delete_session(self.module.id)

    async def _forced_submit(self, reason: str) -> None:
        logger.warning(f"⚠️ [ExamSession] Auto-submitting {self.module.id}: {reason}")
        try:
            await self.submit()
        except SubmissionResultError:
            # Submitted all the same; already logged
            return
        except Exception as e:
            logger.error(f"❌ [ExamSession] Auto-submit failed, leaving exam: {e}")
            if self.on_abandon is not None:
                self.on_abandon(e)

    async def _on_time_up(self) -> None:
        if self.state.submitted:
            return
        await self._forced_submit("time is up")

    async def _on_fullscreen_exit(self) -> None:
        await self._forced_submit("fullscreen exited")
