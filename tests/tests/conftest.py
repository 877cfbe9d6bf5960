"""
Pytest Configuration & Shared Fixtures
"""
import io

import pytest
from openpyxl import Workbook

from exam_portal.schemas import AnswerDetail, Exam, Option, Question, ResultDraft
from exam_portal.services.accounts import AccountRepository, RecoveryAccount
from exam_portal.services.questions import QuestionRepository
from exam_portal.services.results import ResultRepository
from exam_portal.services.session import score_percentage
from exam_portal.services.store import MemoryDocumentStore, MemoryFlagStore


QUESTION_HEADERS = [
    "ExamID", "Question", "OptionA", "OptionB", "OptionC", "OptionD", "CorrectAnswer", "Explanation",
]


def make_workbook(headers, rows):
    """Build .xlsx bytes with a header row followed by data rows."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(headers)
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def flags():
    return MemoryFlagStore()


@pytest.fixture
def question_repo(store, flags):
    return QuestionRepository(store, flags)


@pytest.fixture
def account_repo(store):
    return AccountRepository(store, recovery=RecoveryAccount("admin", "admin123"))


@pytest.fixture
def counter_ids():
    """Deterministic result ids: r1, r2, ..."""
    counter = iter(range(1, 10_000))
    return lambda: f"r{next(counter)}"


@pytest.fixture
def result_repo(store, counter_ids):
    stamps = iter(f"2024-05-0{day}T10:00:00.000Z" for day in range(1, 10))
    return ResultRepository(store, id_factory=counter_ids, clock=lambda: next(stamps))


@pytest.fixture
def three_question_exam():
    """Exam whose correct answers are b, b, b."""
    questions = [
        Question(
            id=f"q{i}",
            text=f"Question {i}?",
            options=[
                Option(id="a", text="Alpha"),
                Option(id="b", text="Bravo"),
                Option(id="c", text="Charlie"),
            ],
            correct_answer="b",
            explanation=f"Because of rule {i}.",
        )
        for i in range(1, 4)
    ]
    return Exam(id="quiz-2024", year=2024, subject="Science", total_questions=3, questions=questions)


@pytest.fixture
def question_workbook():
    """Five question rows; the third is missing its CorrectAnswer."""
    return make_workbook(
        QUESTION_HEADERS,
        [
            ["math-2024", "What is 2 + 2?", "3", "4", "5", "6", "b", "Basic arithmetic."],
            ["math-2024", "What is 3 x 3?", "6", "9", None, None, "B", None],
            ["math-2024", "Broken row", "1", "2", "3", "4", None, None],
            ["sci-2023", "Water boils at?", "90C", "100C", "110C", None, "b", "At sea level."],
            ["math-2024", "What is 10 / 2?", "5", "2", "10", "20", "a", None],
        ],
    )


def make_draft(user="Alice", year=2024, subject="Mathematics", score=1, total=2, answers=None):
    details = {}
    for index, (selected, correct) in enumerate(answers or []):
        details[index] = AnswerDetail(
            question_id=f"q{index + 1}",
            selected=selected,
            correct=correct,
            is_correct=selected == correct,
            question_text=f"Question {index + 1}?",
            selected_text=f"Text {selected}",
            correct_text=f"Text {correct}",
        )
    percentage = score_percentage(score, total)
    return ResultDraft(
        user_name=user,
        exam_year=year,
        subject=subject,
        score=score,
        total_questions=total,
        percentage=percentage,
        details=details,
        duration=2.5,
    )


@pytest.fixture
def seeded_results(result_repo):
    """Three results across two exam keys."""
    return [
        result_repo.append(make_draft("Alice", 2024, "Mathematics", 1, 2, [("a", "a"), ("c", "b")])),
        result_repo.append(make_draft("Bob", 2023, "Mathematics", 3, 3, [("a", "a"), ("b", "b"), ("c", "c")])),
        result_repo.append(make_draft("Carol", 2024, "Mathematics", 0, 2, [("d", "a"), ("a", "b")])),
    ]
