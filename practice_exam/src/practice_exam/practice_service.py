"""
Practice Service

Entry point for programs driving the engine: lists modules with their
completion status, opens exam sessions, serves cached results, resets
modules for a retake and reads attempt history and practice stats.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from practice_exam.api_client import ApiError, PracticeApiClient
from practice_exam.config import Settings
from practice_exam.exam_session import ExamSession, ModuleUnavailableError
from practice_exam.fullscreen import FullscreenCapability
from practice_exam.logger import get_logger, setup_logging
from practice_exam.models import AttemptSummary, PracticeModule, PracticeStats, SubmitAttemptResponse
from practice_exam.result_reconciler import ResultStore
from practice_exam.session_manager import SavedSession, SessionManager
from practice_exam.storage import KeyValueStore, open_store

logger = get_logger(__name__)

NOT_STARTED = "not-started"
IN_PROGRESS = "in-progress"
SUBMITTED = "submitted"


@dataclass
class ModuleListing:
    module: PracticeModule
    status: str


class PracticeService:
    """Module list, session factory and result cache over one store."""

    def __init__(self, api: PracticeApiClient, store: KeyValueStore, settings: Optional[Settings] = None):
        self.api = api
        self.store = store
        self.settings = settings or Settings()
        self.results = ResultStore(store)
        self.sessions = SessionManager(store)
        self.results.run_maintenance()

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "PracticeService":
        """Build a service from environment settings and configure logging."""
        settings = Settings.from_env(dotenv_path)
        setup_logging(level=settings.log_level)
        store = open_store(settings.store_path)
        api = PracticeApiClient(settings.api_base_url, timeout=settings.api_timeout, store=store)
        logger.info("Practice service ready", data={"api": settings.api_base_url, "store": settings.store_path})
        return cls(api, store, settings)

    def _status(self, module_id: str) -> str:
        if self.results.is_submitted(module_id):
            return SUBMITTED
        if self.sessions.get_session(module_id) is not None:
            return IN_PROGRESS
        return NOT_STARTED

    async def list_modules(self) -> List[ModuleListing]:
        """Active modules with their completion status from local state."""
        modules = await asyncio.to_thread(self.api.list_modules)
        return [ModuleListing(module=m, status=self._status(m.id)) for m in modules]

    def saved_sessions(self) -> List[SavedSession]:
        """Resumable attempts for modules that are not already submitted."""
        return [s for s in self.sessions.list_saved_sessions() if not self.results.is_submitted(s.module_id)]

    def cached_result(self, module_id: str) -> Optional[SubmitAttemptResponse]:
        payload = self.results.load(module_id)
        if payload is None:
            return None
        try:
            return SubmitAttemptResponse.model_validate(payload)
        except ValidationError as e:
            logger.warning("Stored result does not parse", data={"module_id": module_id, "errors": e.error_count()})
            return None

    async def previous_attempts(self, job_id: str) -> List[AttemptSummary]:
        """Attempts the backend has recorded for a job assessment."""
        return await asyncio.to_thread(self.api.list_job_attempts, job_id)

    async def practice_stats(self) -> PracticeStats:
        return await asyncio.to_thread(self.api.get_practice_stats)

    def retake(self, module_id: str) -> None:
        """Forget a module's result and any saved attempt so it starts fresh."""
        self.results.forget(module_id)
        self.sessions.delete_session(module_id)
        logger.info(f"Module {module_id} reset for retake")

    async def open_module(
        self,
        module_id: str,
        student_id: str,
        fullscreen: Optional[FullscreenCapability] = None,
        on_abandon: Optional[Callable[[Exception], Any]] = None,
        resume: bool = True,
        **session_options: Any,
    ) -> ExamSession:
        """
        Fetch a module with its questions and build a session for it.

        Raises:
            ModuleUnavailableError: Module missing, archived or empty
            ApiError: Any other backend failure
        """
        try:
            module = await asyncio.to_thread(self.api.get_module, module_id)
        except ApiError as e:
            if e.status == 404:
                raise ModuleUnavailableError(f"Module {module_id} not found") from e
            logger.error("Could not load module", error=e, data={"module_id": module_id, "status": e.status})
            raise
        if module.is_archived:
            raise ModuleUnavailableError(f"Module {module_id} is archived")

        return ExamSession(
            module,
            self.api,
            student_id,
            results=self.results,
            sessions=self.sessions,
            fullscreen=fullscreen,
            settings=self.settings,
            on_abandon=on_abandon,
            resume=resume,
            **session_options,
        )
