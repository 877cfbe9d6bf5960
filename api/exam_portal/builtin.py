"""
Built-in exam catalogue shipped with the application.
"""
from typing import Dict, List

from exam_portal.schemas import Exam, ExamStatus, Option, Question


def _question(qid: str, text: str, options: List[str], correct: str, explanation: str) -> Question:
    return Question(
        id=qid,
        text=text,
        options=[Option(id=oid, text=value) for oid, value in zip("abcd", options)],
        correct_answer=correct,
        explanation=explanation,
    )


BUILTIN_QUESTIONS: Dict[str, List[Question]] = {
    "2024": [
        _question(
            "1", "Which of the following is a prime number?", ["15", "21", "29", "33"], "c",
            "29 is a prime number because it has only two factors: 1 and itself.",
        ),
        _question("2", "Solve for x: 2x + 5 = 15", ["5", "10", "7.5", "2.5"], "a", "2x = 10, so x = 5."),
        _question(
            "3", "What is the area of a circle with radius 3?", ["6π", "9π", "3π", "1.5π"], "b",
            "Area = πr². 3² = 9, so Area = 9π.",
        ),
        _question("4", "What is 15% of 200?", ["30", "15", "25", "35"], "a", "15% of 200 = 0.15 × 200 = 30."),
        _question(
            "5", "If a triangle has sides 3, 4, and 5, what type is it?",
            ["Equilateral", "Isosceles", "Right Triangle", "Obtuse"], "c",
            "Since 3² + 4² = 9 + 16 = 25 = 5², this is a right triangle (Pythagorean theorem).",
        ),
    ],
    "2023": [
        _question("1", "What is the value of √64?", ["6", "7", "8", "9"], "c", "√64 = 8 because 8 × 8 = 64."),
        _question("2", "Simplify: 3x + 2x - x", ["4x", "5x", "6x", "x"], "a", "3x + 2x - x = (3 + 2 - 1)x = 4x."),
        _question(
            "3", "What is the perimeter of a square with side length 7?", ["14", "21", "28", "49"], "c",
            "Perimeter of a square = 4 × side = 4 × 7 = 28.",
        ),
    ],
}


def builtin_exams() -> List[Exam]:
    """Fresh copies of the built-in exams, newest first."""
    exams = []
    for year in (2024, 2023, 2022, 2021, 2020, 2019):
        exam_id = str(year)
        exams.append(
            Exam(
                id=exam_id,
                year=year,
                subject="Mathematics",
                status=ExamStatus.ARCHIVED if year <= 2020 else ExamStatus.AVAILABLE,
                total_questions=50,
                questions=[q.model_copy(deep=True) for q in BUILTIN_QUESTIONS.get(exam_id, [])],
            )
        )
    return exams


BUILTIN_EXAM_IDS = frozenset(exam.id for exam in builtin_exams())
