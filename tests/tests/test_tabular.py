"""
Test Tabular Codec
Spreadsheet rows in, questions and accounts out; results back to rows and Markdown.
"""
import io
from datetime import datetime

import pytest
from openpyxl import load_workbook

from conftest import make_draft, make_workbook
from exam_portal.errors import FormatError
from exam_portal.schemas import Result, RowIssue
from exam_portal.services.tabular import (
    classify,
    classify_single,
    decode_question_rows,
    decode_user_rows,
    encode_results_markdown,
    encode_results_table,
    encode_single_result_table,
    format_date,
    map_question_row,
    read_rows,
    template_workbook,
    write_workbook,
)


def as_result(draft, result_id="r1", timestamp="2024-05-01T10:00:00.000Z"):
    return Result(**draft.model_dump(), id=result_id, timestamp=timestamp)


def test_read_rows_skips_blank_rows_and_cells():
    content = make_workbook(
        ["ExamID", "Question", "OptionA"],
        [["e1", "Q1", "x"], [None, None, None], ["e1", "Q2", None]],
    )
    rows = read_rows(content)

    assert rows == [
        {"ExamID": "e1", "Question": "Q1", "OptionA": "x"},
        {"ExamID": "e1", "Question": "Q2"},
    ]


def test_read_rows_rejects_non_workbook():
    with pytest.raises(FormatError):
        read_rows(b"definitely not a spreadsheet")


def test_decode_groups_by_exam_in_first_seen_order(question_workbook):
    decoded = decode_question_rows(read_rows(question_workbook))

    assert list(decoded.groups) == ["math-2024", "sci-2023"]
    assert [q.text for q in decoded.groups["math-2024"]] == [
        "What is 2 + 2?", "What is 3 x 3?", "What is 10 / 2?",
    ]
    assert decoded.question_count == 4


def test_decode_reports_row_missing_correct_answer(question_workbook):
    decoded = decode_question_rows(read_rows(question_workbook))

    assert len(decoded.skipped) == 1
    issue = decoded.skipped[0]
    assert issue.index == 2
    assert issue.row_number == 4
    assert "CorrectAnswer" in issue.reason


def test_blank_options_are_dropped_and_answer_lowercased(question_workbook):
    decoded = decode_question_rows(read_rows(question_workbook))
    question = decoded.groups["math-2024"][1]

    assert [option.id for option in question.options] == ["a", "b"]
    assert question.correct_answer == "b"
    assert question.explanation == "No explanation provided."


def test_missing_exam_id_uses_default():
    exam_id, question = map_question_row(
        {"Question": "Q?", "OptionA": "yes", "OptionB": "no", "CorrectAnswer": "a"}, 0, id_stamp=42
    )
    assert exam_id == "custom-exam"
    assert question.id == "q-42-0"


def test_correct_answer_must_name_an_option():
    issue = map_question_row(
        {"Question": "Q?", "OptionA": "yes", "OptionB": "no", "CorrectAnswer": "d"}, 3, id_stamp=1
    )
    assert isinstance(issue, RowIssue)
    assert issue.index == 3


def test_single_option_row_is_skipped():
    issue = map_question_row({"Question": "Q?", "OptionA": "only", "CorrectAnswer": "a"}, 0)
    assert isinstance(issue, RowIssue)


def test_user_headers_match_case_insensitively():
    decoded = decode_user_rows([
        {"USERNAME": "s1", "password": "p1", "Name": "Sam"},
        {"username": "t1", "PassWord": "p2", "ROLE": "Admin"},
    ])

    assert [a.username for a in decoded.accounts] == ["s1", "t1"]
    assert decoded.accounts[0].role.value == "student"
    assert decoded.accounts[1].role.value == "admin"


def test_user_rows_without_password_or_with_unknown_role_are_skipped():
    decoded = decode_user_rows([
        {"Username": "s1"},
        {"Username": "s2", "Password": "x", "Role": "guest"},
        {"Username": "s3", "Password": "y"},
    ])

    assert [a.username for a in decoded.accounts] == ["s3"]
    assert [issue.index for issue in decoded.skipped] == [0, 1]


def test_empty_user_sheet_is_a_format_error():
    with pytest.raises(FormatError, match="empty"):
        decode_user_rows([])


@pytest.mark.parametrize("percentage,expected", [(70, "Pass"), (69.9, "Fair"), (50, "Fair"), (49.9, "Fail")])
def test_bulk_classification(percentage, expected):
    assert classify(percentage) == expected


def test_single_classification_has_no_fair_band():
    assert classify_single(66.7) == "Pass"
    assert classify_single(49.9) == "Fail"


def test_format_date_handles_iso_and_missing():
    assert format_date("2024-05-01T10:00:00.000Z") == "2024-05-01 10:00:00"
    assert format_date(None) == "N/A"


def test_results_table_pads_answer_columns():
    short = as_result(make_draft("Alice", total=2, answers=[("a", "a"), ("c", "b")]))
    long = as_result(
        make_draft("Bob", score=3, total=3, answers=[("a", "a"), ("b", "b"), ("c", "c")]), result_id="r2"
    )

    rows = encode_results_table([short, long])

    assert list(rows[0])[:10] == [
        "No.", "Student Name", "Exam Year", "Subject", "Score", "Total Questions",
        "Percentage", "Status", "Date", "Duration (min)",
    ]
    assert rows[0]["Q1 Answer"] == "A: Text a"
    assert rows[0]["Q3 Answer"] == "-"
    assert rows[1]["Q3 Answer"] == "C: Text c"
    assert rows[0]["Percentage"] == "50%"
    assert rows[0]["Status"] == "Fair"


def test_single_result_table_includes_correct_answers():
    result = as_result(make_draft(total=2, answers=[("a", "a"), ("c", "b")]))
    [row] = encode_single_result_table(result)

    assert row["Q2 Answer"] == "C: Text c"
    assert row["Q2 Correct"] == "B: Text b"
    assert row["Status"] == "Pass"


def test_results_markdown_layout():
    results = [
        as_result(make_draft("Alice", total=2, answers=[("a", "a"), ("c", "b")])),
        as_result(make_draft("Bob", score=3, total=3, answers=[("a", "a"), ("b", "b"), ("c", "c")]), "r2"),
    ]
    text = encode_results_markdown(results, generated_at=datetime(2024, 6, 1, 9, 30))

    assert text.startswith("# All Exam Results Report")
    assert "**Generated Date:** 2024-06-01 09:30:00" in text
    assert "## 1. Alice - 2024 Mathematics" in text
    assert "| 3 | - | - | - |" in text
    assert text.rstrip().endswith("*Total Records: 2*")


def test_write_workbook_round_trips_through_openpyxl():
    content = write_workbook([{"A": 1, "B": "x"}, {"A": 2, "B": "y"}], "Data", [5, 10])
    sheet = load_workbook(io.BytesIO(content)).active

    assert sheet.title == "Data"
    assert [[c.value for c in row] for row in sheet.iter_rows()] == [["A", "B"], [1, "x"], [2, "y"]]
    assert sheet.column_dimensions["B"].width == 10


def test_question_template_is_importable():
    filename, content = template_workbook("questions")
    decoded = decode_question_rows(read_rows(content))

    assert filename == "question-upload-template.xlsx"
    assert list(decoded.groups) == ["math-2024"]
    assert decoded.skipped == []
