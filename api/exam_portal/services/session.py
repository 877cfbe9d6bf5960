"""
Exam Session Engine
Drives one attempt: Loading -> Answering(i) -> Submitted(i) -> Answering(i+1) | Finished.

Illegal actions are ignored and reported by returning False, so a client can
never break an attempt by pressing the wrong button.
"""
import logging
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional

from exam_portal.schemas import (
    AnswerDetail,
    Exam,
    Question,
    QuestionView,
    Result,
    ResultDraft,
    SessionSnapshot,
    SessionState,
)
from exam_portal.services.questions import QuestionRepository
from exam_portal.services.results import ResultRepository

logger = logging.getLogger(__name__)


def score_percentage(score: int, total: int) -> float:
    """Percentage to one decimal place, exact ties rounded up (1/16 -> 6.3)."""
    if not total:
        return 0.0
    exact = Decimal(100 * score) / Decimal(total)
    return float(exact.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class ExamSession:
    def __init__(
        self,
        exam: Exam,
        user_name: str,
        questions: QuestionRepository,
        results: ResultRepository,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.exam = exam
        self.user_name = user_name or "Anonymous"
        self.question_repository = questions
        self.result_repository = results
        self.clock = clock

        self.state = SessionState.LOADING
        self.questions: List[Question] = []
        self.index = 0
        self.selected: Optional[str] = None
        self.answers: Dict[int, AnswerDetail] = {}
        self.result: Optional[Result] = None
        self._started_at: Optional[float] = None

    # --- Derived values ---

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self.state in (SessionState.ANSWERING, SessionState.SUBMITTED):
            return self.questions[self.index]
        return None

    @property
    def score(self) -> int:
        return sum(1 for answer in self.answers.values() if answer.is_correct)

    @property
    def percentage(self) -> float:
        return score_percentage(self.score, self.total)

    def _reject(self, action: str) -> bool:
        logger.debug(f"[Session] Ignoring {action} in state {self.state.value} (question {self.index})")
        return False

    def _start(self) -> None:
        self.index = 0
        self.selected = None
        self.answers = {}
        self.result = None
        self._started_at = self.clock()
        self.state = SessionState.ANSWERING

    # --- Transitions ---

    def load(self) -> SessionState:
        """Fetches the exam's questions; an exam without questions ends in EMPTY."""
        if self.state != SessionState.LOADING:
            self._reject("load")
            return self.state

        self.questions = self.question_repository.get_exam_questions(self.exam.id)
        if not self.questions:
            logger.info(f"[Session] No questions found for exam {self.exam.id}")
            self.state = SessionState.EMPTY
        else:
            self._start()
        return self.state

    def select_option(self, option_id: str) -> bool:
        if self.state != SessionState.ANSWERING:
            return self._reject("select")
        if option_id not in {option.id for option in self.current_question.options}:
            return self._reject(f"select of unknown option {option_id!r}")
        self.selected = option_id
        return True

    def submit(self) -> bool:
        if self.state != SessionState.ANSWERING or self.selected is None:
            return self._reject("submit")

        question = self.current_question
        self.answers[self.index] = AnswerDetail(
            question_id=question.id,
            selected=self.selected,
            correct=question.correct_answer,
            is_correct=self.selected == question.correct_answer,
            question_text=question.text,
            selected_text=question.option_text(self.selected),
            correct_text=question.option_text(question.correct_answer),
        )
        self.state = SessionState.SUBMITTED
        return True

    def next(self) -> bool:
        """
        Advances to the next question, or finishes the attempt after the last one.

        Raises:
            StoreUnavailable: If saving the finished attempt fails. The session
                stays on the last submitted question so next() can be retried.
        """
        if self.state != SessionState.SUBMITTED:
            return self._reject("next")

        if self.index < self.total - 1:
            self.index += 1
            self.selected = None
            self.state = SessionState.ANSWERING
            return True

        self.result = self.result_repository.append(self._build_result())
        self.state = SessionState.FINISHED
        return True

    def prev(self) -> bool:
        if self.state != SessionState.ANSWERING or self.index == 0:
            return self._reject("prev")
        self.index -= 1
        self.selected = None
        self.state = SessionState.ANSWERING
        return True

    def retry(self) -> bool:
        """Starts a fresh attempt; the saved result of the previous one is kept."""
        if self.state != SessionState.FINISHED:
            return self._reject("retry")
        self._start()
        return True

    # --- Results ---

    def _build_result(self) -> ResultDraft:
        duration = None
        if self._started_at is not None:
            duration = round(max(self.clock() - self._started_at, 0) / 60, 1)
        return ResultDraft(
            user_name=self.user_name,
            exam_year=self.exam.year,
            subject=self.exam.subject,
            score=self.score,
            total_questions=self.total,
            percentage=self.percentage,
            details=dict(self.answers),
            duration=duration,
        )

    def snapshot(self, session_id: Optional[str] = None) -> SessionSnapshot:
        question = self.current_question
        answer = self.answers.get(self.index) if self.state == SessionState.SUBMITTED else None
        return SessionSnapshot(
            session_id=session_id,
            exam_id=self.exam.id,
            state=self.state,
            index=self.index,
            total=self.total,
            question=QuestionView(id=question.id, text=question.text, options=question.options) if question else None,
            selected=self.selected,
            answer=answer,
            explanation=question.explanation if answer else None,
            score=self.score,
            percentage=self.percentage,
            result=self.result,
        )
