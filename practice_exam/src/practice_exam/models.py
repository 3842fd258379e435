"""
Wire models for the practice API.

Field names follow the remote service exactly; result payloads keep any
extra fields the server sends so they can be persisted verbatim.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

QuestionType = Literal["mcq_single", "mcq_multi", "descriptive", "coding"]
Difficulty = Literal["easy", "medium", "hard"]

FREE_TEXT_TYPES = ("descriptive", "coding")


# ==================== Modules & Questions ====================

class Option(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str


class Question(BaseModel):
    """A question as served for one session. Read-only on the client."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    statement: str
    type: QuestionType
    options: List[Option] = Field(default_factory=list)
    explanation: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    role: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    time_limit_seconds: Optional[int] = None

    @property
    def is_free_text(self) -> bool:
        return self.type in FREE_TEXT_TYPES


class PracticeModule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    role: Optional[str] = None
    duration_seconds: int
    questions_count: int = 0
    question_ids: List[str] = Field(default_factory=list)
    is_archived: bool = False
    description: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    tags: List[str] = Field(default_factory=list)


class ModuleWithQuestions(PracticeModule):
    questions: List[Question] = Field(default_factory=list)


# ==================== Submission ====================

class QuestionAnswer(BaseModel):
    question_id: str
    answer: List[str]
    time_spent: int = 0


class SubmitAttemptRequest(BaseModel):
    module_id: str
    student_id: str
    attempt_id: str
    answers: List[QuestionAnswer]
    flagged_question_ids: List[str] = Field(default_factory=list)
    started_at: str
    ended_at: str


class WeakArea(BaseModel):
    model_config = ConfigDict(extra="allow")

    tag: str
    accuracy: float


class QuestionResult(BaseModel):
    """Per-question outcome; the service uses either `is_correct` or `correct`."""
    model_config = ConfigDict(extra="allow")

    question_id: str
    is_correct: Optional[bool] = None
    correct: Optional[bool] = None
    score: Optional[float] = None
    max_score: Optional[float] = None
    feedback: Optional[str] = None
    explanation: Optional[str] = None


class AnswerReview(BaseModel):
    model_config = ConfigDict(extra="allow")

    question_id: str
    statement: Optional[str] = None
    user_answer: Optional[Any] = None
    correct_answer: Optional[Any] = None
    explanation: Optional[str] = None


class SubmitAttemptResponse(BaseModel):
    """Backend-computed result of a submitted attempt."""
    model_config = ConfigDict(extra="allow", frozen=True)

    attempt_id: Optional[str] = None
    module_id: str
    score_percent: float = 0.0
    time_taken_seconds: int = 0
    weak_areas: List[WeakArea] = Field(default_factory=list)
    role_fit_score: Optional[float] = None
    question_results: List[QuestionResult] = Field(default_factory=list)
    answer_review: Optional[List[AnswerReview]] = None

# ==================== Coding questions ====================

class CodeExecutionRequest(BaseModel):
    code: str
    language: str = "python"
    input: Optional[str] = None
    question_id: Optional[str] = None


class CodeExecutionResult(BaseModel):
    """Output of one sandboxed run of a student's code."""
    model_config = ConfigDict(extra="allow")

    stdout: str = ""
    stderr: str = ""
    runtime: float = 0.0  # milliseconds
    memory: float = 0.0
    status: str = "error"

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class CodingTestCase(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    question_id: Optional[str] = None
    input_data: str = ""
    expected_output: str = ""
    is_hidden: bool = False
    points: float = 0
    order: int = 0


class CodingTestResult(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    test_case_id: str
    input: str = ""
    expected_output: str = ""
    actual_output: str = ""
    passed: bool = False
    points: float = 0
    is_hidden: bool = False


class CodingValidationResult(BaseModel):
    """Server verdict of a coding answer against the question's test cases."""
    model_config = ConfigDict(extra="allow")

    valid: bool = False
    message: str = ""
    test_results: List[CodingTestResult] = Field(default_factory=list)
    total_tests: int = 0
    passed_tests: int = 0

    @property
    def all_passed(self) -> bool:
        return self.total_tests > 0 and self.passed_tests == self.total_tests


# ==================== History & stats ====================

class AttemptSummary(BaseModel):
    """One stored attempt as listed for a job assessment."""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    id: str
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    module_id: Optional[str] = None
    module_title: Optional[str] = None
    score_percent: Optional[float] = None
    time_taken_seconds: Optional[int] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None


class RecentAttempt(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, coerce_numbers_to_str=True)

    module_id: str = Field(alias="moduleId")
    module_title: Optional[str] = Field(default=None, alias="moduleTitle")
    score: float = 0.0
    date: Optional[str] = None


class PracticeStats(BaseModel):
    """Aggregate practice performance of the signed-in student."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    total_attempts: int = Field(default=0, alias="totalAttempts")
    average_score: float = Field(default=0.0, alias="averageScore")
    best_score: float = Field(default=0.0, alias="bestScore")
    total_time_spent: int = Field(default=0, alias="totalTimeSpent")
    weak_areas: List[WeakArea] = Field(default_factory=list, alias="weakAreas")
    recent_attempts: List[RecentAttempt] = Field(default_factory=list, alias="recentAttempts")
