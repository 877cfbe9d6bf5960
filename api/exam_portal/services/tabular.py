"""
Tabular Codec
Converts spreadsheet rows into questions and accounts, and results back into
spreadsheet rows and Markdown reports.

Rows are dicts keyed by header name, one per non-blank spreadsheet row below
the header row.
"""
import io
import logging
import time
import zipfile
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import ValidationError as SchemaError

from exam_portal.config import (
    DEFAULT_EXAM_ID,
    DEFAULT_EXPLANATION,
    FAIR_THRESHOLD,
    PASS_THRESHOLD,
    SINGLE_PASS_THRESHOLD,
    get_upload_template,
)
from exam_portal.errors import FormatError
from exam_portal.schemas import (
    OPTION_IDS,
    Account,
    DecodedQuestions,
    DecodedUsers,
    Option,
    Question,
    Result,
    RowIssue,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

QUESTION_REQUIRED = ("Question", "OptionA", "CorrectAnswer")
OPTION_COLUMNS = ("OptionA", "OptionB", "OptionC", "OptionD")
HEADER_ROWS = 1

RESULT_COLUMN_WIDTHS = [5, 20, 12, 15, 8, 15, 12, 10, 20, 12]
SINGLE_RESULT_COLUMN_WIDTHS = [20, 12, 15, 8, 15, 12, 10, 20]
ANSWER_COLUMN_WIDTH = 30


# --- Reading ---

def read_rows(content: bytes) -> List[Row]:
    """
    Reads the first worksheet of an .xlsx file into header-keyed rows.

    Args:
        content: Raw workbook bytes.

    Returns:
        One dict per non-blank data row. Empty cells are left out.

    Raises:
        FormatError: If the bytes are not a readable workbook.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, TypeError, OSError) as e:
        raise FormatError(f"Unreadable spreadsheet: {e}") from e

    try:
        sheet = workbook.worksheets[0]
        values = sheet.iter_rows(values_only=True)
        header = next(values, None)
        if header is None:
            return []
        headers = [str(cell).strip() if cell is not None else None for cell in header]

        rows: List[Row] = []
        for raw in values:
            row = {
                name: cell
                for name, cell in zip(headers, raw)
                if name and cell is not None and _cell_text(cell) != ""
            }
            if row:
                rows.append(row)
        return rows
    finally:
        workbook.close()


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _issue(index: int, reason: str) -> RowIssue:
    return RowIssue(index=index, row_number=index + HEADER_ROWS + 1, reason=reason)


def _schema_reason(error: SchemaError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


# --- Questions ---

def map_question_row(row: Row, index: int, id_stamp: Optional[int] = None) -> Union[tuple, RowIssue]:
    """
    Maps one question row to ``(exam_id, Question)`` or a RowIssue.

    Options are assigned ids by column position and blank options are dropped.
    """
    missing = [field for field in QUESTION_REQUIRED if not _cell_text(row.get(field))]
    if missing:
        return _issue(index, f"Missing required fields: {', '.join(missing)}")

    stamp = id_stamp if id_stamp is not None else int(time.time() * 1000)
    options = []
    for option_id, column in zip(OPTION_IDS, OPTION_COLUMNS):
        text = _cell_text(row.get(column))
        if text:
            options.append({"id": option_id, "text": text})

    try:
        question = Question(
            id=f"q-{stamp}-{index}",
            text=_cell_text(row.get("Question")),
            options=[Option(**option) for option in options],
            correct_answer=_cell_text(row.get("CorrectAnswer")).lower(),
            explanation=_cell_text(row.get("Explanation")) or DEFAULT_EXPLANATION,
        )
    except SchemaError as e:
        return _issue(index, _schema_reason(e))

    exam_id = _cell_text(row.get("ExamID")) or DEFAULT_EXAM_ID
    return exam_id, question


def decode_question_rows(rows: Sequence[Row]) -> DecodedQuestions:
    """
    Groups question rows by ExamID, preserving first-seen order.

    Rows failing validation are skipped and reported; they never fail the batch.
    """
    decoded = DecodedQuestions()
    stamp = int(time.time() * 1000)

    for index, row in enumerate(rows):
        mapped = map_question_row(row, index, id_stamp=stamp)
        if isinstance(mapped, RowIssue):
            logger.warning(f"[Import] Skipping row {mapped.row_number}: {mapped.reason}")
            decoded.skipped.append(mapped)
            continue
        exam_id, question = mapped
        decoded.groups.setdefault(exam_id, []).append(question)

    return decoded


# --- Users ---

def map_user_row(row: Row, index: int) -> Union[Account, RowIssue]:
    """Maps one user row to an Account. Header names match case-insensitively."""
    cells = {str(key).strip().lower(): value for key, value in row.items()}

    username = _cell_text(cells.get("username"))
    password = _cell_text(cells.get("password"))
    if not username or not password:
        return _issue(index, "Missing username or password")

    try:
        return Account(
            username=username,
            password=password,
            name=_cell_text(cells.get("name")),
            role=_cell_text(cells.get("role")).lower() or "student",
        )
    except SchemaError as e:
        return _issue(index, _schema_reason(e))


def decode_user_rows(rows: Sequence[Row]) -> DecodedUsers:
    """
    Raises:
        FormatError: If the sheet has no data rows at all.
    """
    if not rows:
        raise FormatError("Excel file appears to be empty")

    decoded = DecodedUsers()
    for index, row in enumerate(rows):
        mapped = map_user_row(row, index)
        if isinstance(mapped, RowIssue):
            logger.debug(f"[Import] Dropping user row {mapped.row_number}: {mapped.reason}")
            decoded.skipped.append(mapped)
        else:
            decoded.accounts.append(mapped)
    return decoded


# --- Results ---

def classify(percentage: float) -> str:
    """Status used by bulk exports."""
    if percentage >= PASS_THRESHOLD:
        return "Pass"
    if percentage >= FAIR_THRESHOLD:
        return "Fair"
    return "Fail"


def classify_single(percentage: float) -> str:
    """Status used by single-result exports (no Fair band)."""
    return "Pass" if percentage >= SINGLE_PASS_THRESHOLD else "Fail"


def format_percentage(percentage: float) -> str:
    return f"{percentage:g}%"


def format_date(timestamp: Optional[str]) -> str:
    if not timestamp:
        return "N/A"
    try:
        moment = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return timestamp
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def _answer_cell(option_id: Optional[str], text: str) -> str:
    if not option_id:
        return "-"
    return f"{option_id.upper()}: {text}" if text else option_id.upper()


def max_question_count(results: Iterable[Result]) -> int:
    return max((result.total_questions for result in results), default=0)


def encode_results_table(results: Sequence[Result], max_question_columns: Optional[int] = None) -> List[Row]:
    """
    One row per result plus one ``Q{n} Answer`` column per question index.

    Args:
        results: Results in display order.
        max_question_columns: Number of answer columns; defaults to the largest
            totalQuestions in the set. Shorter results are padded with "-".
    """
    if max_question_columns is None:
        max_question_columns = max_question_count(results)

    rows: List[Row] = []
    for number, result in enumerate(results, start=1):
        row: Row = {
            "No.": number,
            "Student Name": result.user_name,
            "Exam Year": result.exam_year,
            "Subject": result.subject,
            "Score": result.score,
            "Total Questions": result.total_questions,
            "Percentage": format_percentage(result.percentage),
            "Status": classify(result.percentage),
            "Date": format_date(result.timestamp),
            "Duration (min)": result.duration if result.duration is not None else "N/A",
        }
        for i in range(max_question_columns):
            detail = result.details.get(i)
            row[f"Q{i + 1} Answer"] = _answer_cell(detail.selected, detail.selected_text) if detail else "-"
        rows.append(row)
    return rows


def encode_single_result_table(result: Result) -> List[Row]:
    """Single-row sheet with both the chosen and the correct answer per question."""
    row: Row = {
        "Student Name": result.user_name or "Anonymous",
        "Exam Year": result.exam_year,
        "Subject": result.subject,
        "Score": result.score,
        "Total Questions": result.total_questions,
        "Percentage": format_percentage(result.percentage),
        "Status": classify_single(result.percentage),
        "Date": format_date(result.timestamp),
    }
    for i in range(result.total_questions):
        detail = result.details.get(i)
        if detail:
            row[f"Q{i + 1} Answer"] = _answer_cell(detail.selected, detail.selected_text)
            row[f"Q{i + 1} Correct"] = _answer_cell(detail.correct, detail.correct_text)
        else:
            row[f"Q{i + 1} Answer"] = "-"
            row[f"Q{i + 1} Correct"] = "-"
    return [row]


def _markdown_cell(text: str) -> str:
    return text.replace("|", "-").replace("\n", " ") if text else "-"


def encode_results_markdown(results: Sequence[Result], generated_at: Optional[datetime] = None) -> str:
    """
    Markdown report with one section and one question breakdown per result.

    Every breakdown lists the same number of questions (the largest
    totalQuestions in the set); missing answers show as "-".
    """
    generated_at = generated_at or datetime.now()
    max_questions = max_question_count(results)

    lines = [
        "# All Exam Results Report",
        f"**Generated Date:** {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        "",
    ]
    for number, result in enumerate(results, start=1):
        status_icon = "✅" if result.percentage >= FAIR_THRESHOLD else "❌"
        lines += [
            f"## {number}. {result.user_name} - {result.exam_year} {result.subject}",
            f"- **Score:** {result.score}/{result.total_questions} ({format_percentage(result.percentage)})",
            f"- **Status:** {status_icon} {classify(result.percentage)}",
            f"- **Date:** {format_date(result.timestamp)}",
            "",
        ]
        if result.details:
            lines += [
                "### Question Breakdown",
                "| Q# | Question | Your Answer | Status |",
                "|---|---|---|---|",
            ]
            for i in range(max_questions):
                detail = result.details.get(i)
                if detail is None:
                    lines.append(f"| {i + 1} | - | - | - |")
                    continue
                answer = detail.selected.upper()
                if detail.selected_text:
                    answer += f" ({_markdown_cell(detail.selected_text)})"
                icon = "✅" if detail.is_correct else "❌"
                lines.append(f"| {i + 1} | {_markdown_cell(detail.question_text)} | {answer} | {icon} |")
            lines.append("")
        else:
            lines += ["*Detailed answers not available for this record.*", ""]
        lines += ["---", ""]

    lines += ["", f"*Total Records: {len(results)}*"]
    return "\n".join(lines)


def encode_single_result_markdown(result: Result) -> str:
    """Markdown report for one attempt, including the correct answers."""
    lines = [
        "# Exam Results Report",
        "",
        f"**Student:** {result.user_name or 'Anonymous'}",
        f"**Exam:** {result.exam_year} {result.subject}",
        f"**Date:** {format_date(result.timestamp)}",
        f"**Score:** {result.score} / {result.total_questions} ({format_percentage(result.percentage)})",
        f"**Status:** {classify_single(result.percentage).upper()}",
        "",
        "## Question Breakdown",
        "",
        "| # | Question | Your Answer | Correct Answer | Result |",
        "|---|---|---|---|---|",
    ]
    for i in range(result.total_questions):
        detail = result.details.get(i)
        if detail is None:
            lines.append(f"| {i + 1} | - | - | - | - |")
            continue
        icon = "✅" if detail.is_correct else "❌"
        lines.append(
            f"| {i + 1} | {_markdown_cell(detail.question_text)} | **{detail.selected.upper()}** "
            f"| {detail.correct.upper()} | {icon} |"
        )
    lines += ["", "---", "*Generated by Exam Portal*"]
    return "\n".join(lines)


# --- Workbooks ---

def write_workbook(rows: Sequence[Row], sheet_title: str, column_widths: Sequence[int] = ()) -> bytes:
    """Writes header-keyed rows to a single-sheet .xlsx and returns its bytes."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title

    if rows:
        headers = list(rows[0].keys())
        sheet.append(headers)
        for row in rows:
            sheet.append([row.get(header) for header in headers])

    for position, width in enumerate(column_widths, start=1):
        sheet.column_dimensions[get_column_letter(position)].width = width

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def result_column_widths(max_questions: int) -> List[int]:
    return RESULT_COLUMN_WIDTHS + [ANSWER_COLUMN_WIDTH] * max_questions


def single_result_column_widths(total_questions: int) -> List[int]:
    return SINGLE_RESULT_COLUMN_WIDTHS + [ANSWER_COLUMN_WIDTH] * (2 * total_questions)


def template_rows(kind: str) -> List[List[Any]]:
    """Header row plus example rows for an upload format ("questions" or "users")."""
    template = get_upload_template(kind)
    return [list(template["headers"])] + [list(row) for row in template["rows"]]


def template_workbook(kind: str) -> tuple[str, bytes]:
    """Returns ``(filename, xlsx bytes)`` for an upload template."""
    template = get_upload_template(kind)
    headers = template["headers"]
    rows = [dict(zip(headers, values)) for values in template["rows"]]
    return template["filename"], write_workbook(rows, template["sheet"])
