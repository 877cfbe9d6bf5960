"""
Data Schemas for Exam Portal
Pydantic models for type-safe data validation across the application.

Stored documents and API payloads use camelCase keys (``correctAnswer``,
``totalQuestions``, ``examYear``); Python code uses the snake_case attributes.
"""
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


OPTION_IDS = ("a", "b", "c", "d")
OptionId = Literal["a", "b", "c", "d"]


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_document(self) -> dict:
        """JSON-safe dict with camelCase keys, as written to the document store."""
        return self.model_dump(mode="json", by_alias=True)


class ExamStatus(str, Enum):
    """Visibility of an exam to students."""
    AVAILABLE = "Available"
    ARCHIVED = "Archived"


class Role(str, Enum):
    """Account roles."""
    STUDENT = "student"
    ADMIN = "admin"


class Option(CamelModel):
    """Represents a single answer option in a multiple-choice question."""
    id: OptionId = Field(..., description="Option id (a, b, c, d), fixed by column position")
    text: str = Field(..., min_length=1, description="The answer text")


class Question(CamelModel):
    """Represents a single multiple-choice question."""
    id: str = Field(..., description="Question id")
    text: str = Field(..., min_length=1, description="The question text")
    options: List[Option] = Field(..., min_length=2, max_length=4, description="Answer choices")
    correct_answer: OptionId = Field(..., description="Id of the correct option")
    explanation: str = Field("", description="Explanation of the answer")

    @model_validator(mode="after")
    def _correct_answer_is_an_option(self) -> "Question":
        if self.correct_answer not in {option.id for option in self.options}:
            raise ValueError(
                f"correct answer '{self.correct_answer}' does not match any option"
            )
        return self

    def option_text(self, option_id: str) -> str:
        for option in self.options:
            if option.id == option_id:
                return option.text
        return ""


class Exam(CamelModel):
    """A year/subject-tagged ordered set of questions."""
    id: str = Field(..., description="Stable exam key")
    year: int = Field(..., description="Exam year")
    subject: str = Field(..., description="Subject name, e.g., Mathematics")
    status: ExamStatus = Field(ExamStatus.AVAILABLE, description="Visibility status")
    total_questions: int = Field(0, ge=0, description="Number of questions in the exam")
    questions: List[Question] = Field(default_factory=list, description="Ordered questions")


class ExamMetadataUpdate(CamelModel):
    """Partial metadata edit; questions are never touched."""
    year: Optional[int] = None
    subject: Optional[str] = None


class Account(CamelModel):
    """A user account (collection: users, keyed by username)."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, description="Opaque password")
    name: str = Field("", description="Display name")
    role: Role = Field(Role.STUDENT, description="Role of the user")


class AccountProfile(CamelModel):
    """Account as returned to clients (no password)."""
    username: str
    name: str
    role: Role


class AnswerDetail(CamelModel):
    """One recorded answer inside a result."""
    question_id: str
    selected: OptionId
    correct: OptionId
    is_correct: bool
    question_text: str = ""
    selected_text: str = ""
    correct_text: str = ""


class ExamKey(BaseModel):
    """
    The (year, subject) pair grouping attempts of the same exam.

    The string form ``"{year}-{subject}"`` only exists at the HTTP boundary.
    Parsing splits on the first hyphen, so subjects containing hyphens
    round-trip unchanged.
    """
    model_config = ConfigDict(frozen=True)

    year: int
    subject: str

    @property
    def key(self) -> str:
        return f"{self.year}-{self.subject}"

    @classmethod
    def parse(cls, key: str) -> "ExamKey":
        year, sep, subject = key.partition("-")
        if not sep or not year.isdigit() or not subject:
            raise ValueError(f"Invalid exam key: {key!r}")
        return cls(year=int(year), subject=subject)


class ExamKeySummary(BaseModel):
    year: int
    subject: str
    key: str


class ResultDraft(CamelModel):
    """A completed attempt before it is stamped with id and timestamp."""
    user_name: str = Field("Anonymous", description="Name of the test taker")
    exam_year: int
    subject: str
    score: int = Field(..., ge=0)
    total_questions: int = Field(..., gt=0)
    percentage: float = Field(..., ge=0, le=100)
    details: Dict[int, AnswerDetail] = Field(default_factory=dict, description="Answers by question index")
    duration: Optional[float] = Field(None, ge=0, description="Minutes spent on the attempt")

    @property
    def exam_key(self) -> ExamKey:
        return ExamKey(year=self.exam_year, subject=self.subject)


class Result(ResultDraft):
    """A persisted attempt (collection: exam_results)."""
    id: str
    timestamp: str = Field(..., description="ISO-8601 save time")


class RowIssue(BaseModel):
    """A spreadsheet row that was skipped during import."""
    index: int = Field(..., description="Zero-based data row index")
    row_number: int = Field(..., description="Row number as shown in the spreadsheet")
    reason: str


class DecodedQuestions(BaseModel):
    """Questions grouped by exam id, in first-seen order."""
    groups: Dict[str, List[Question]] = Field(default_factory=dict)
    skipped: List[RowIssue] = Field(default_factory=list)

    @property
    def question_count(self) -> int:
        return sum(len(questions) for questions in self.groups.values())


class DecodedUsers(BaseModel):
    accounts: List[Account] = Field(default_factory=list)
    skipped: List[RowIssue] = Field(default_factory=list)


class ImportReport(BaseModel):
    """Outcome of a bulk question import."""
    exam_ids: List[str]
    question_count: int
    skipped: List[RowIssue] = Field(default_factory=list)


class UserImportReport(BaseModel):
    imported: int
    skipped: List[RowIssue] = Field(default_factory=list)


class Notice(BaseModel):
    """User-facing message plus severity."""
    type: Literal["success", "error"]
    text: str


class SessionState(str, Enum):
    """States of one exam attempt."""
    LOADING = "loading"
    EMPTY = "empty"
    ANSWERING = "answering"
    SUBMITTED = "submitted"
    FINISHED = "finished"


class QuestionView(CamelModel):
    """A question as shown while answering (no correct answer)."""
    id: str
    text: str
    options: List[Option]


class SessionSnapshot(CamelModel):
    """Observable state of an exam session."""
    session_id: Optional[str] = None
    exam_id: str
    state: SessionState
    index: int = 0
    total: int = 0
    question: Optional[QuestionView] = None
    selected: Optional[OptionId] = None
    answer: Optional[AnswerDetail] = Field(None, description="Recorded answer once submitted")
    explanation: Optional[str] = Field(None, description="Shown once submitted")
    score: int = 0
    percentage: float = 0.0
    result: Optional[Result] = None
