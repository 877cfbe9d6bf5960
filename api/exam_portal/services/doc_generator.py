"""
Document Generator Service
Renders a printable .docx result sheet for one attempt.
"""
import io
import logging

from docx import Document
from docx.shared import Pt

from exam_portal.schemas import Result
from exam_portal.services.tabular import classify_single, format_date, format_percentage

logger = logging.getLogger(__name__)


def _add_breakdown(doc: Document, result: Result) -> None:
    table = doc.add_table(rows=1, cols=5)
    table.style = 'Table Grid'
    hdr_cells = table.rows[0].cells
    hdr_cells[0].text = 'No.'
    hdr_cells[1].text = 'Question'
    hdr_cells[2].text = 'Your Answer'
    hdr_cells[3].text = 'Correct Answer'
    hdr_cells[4].text = 'Result'

    for i in range(result.total_questions):
        detail = result.details.get(i)
        row_cells = table.add_row().cells
        row_cells[0].text = str(i + 1)
        if detail is None:
            for cell in row_cells[1:]:
                cell.text = "-"
            continue
        row_cells[1].text = detail.question_text or "-"
        row_cells[2].text = f"{detail.selected.upper()}) {detail.selected_text}".strip()
        row_cells[3].text = f"{detail.correct.upper()}) {detail.correct_text}".strip()
        row_cells[4].text = "Correct" if detail.is_correct else "Incorrect"


def generate_result_docx(result: Result) -> bytes:
    """
    Generates a .docx result sheet from a Result.

    Args:
        result: Persisted attempt with per-question details.

    Returns:
        The document as bytes.
    """
    logger.info(f"[Publisher] Generating DOCX result sheet for {result.id}")
    doc = Document()

    # Set Metadata
    core_properties = doc.core_properties
    core_properties.title = f"Exam Results - {result.exam_year} {result.subject}"
    core_properties.subject = result.subject
    core_properties.author = result.user_name or "Anonymous"

    style = doc.styles['Normal']
    style.font.size = Pt(12)

    # Title Section
    heading = doc.add_heading("Exam Results Report", 0)
    heading.alignment = 1  # Center

    p_info = doc.add_paragraph()
    p_info.alignment = 1  # Center
    p_info.add_run(f"Student: {result.user_name or 'Anonymous'}").bold = True
    p_info.add_run(f" | Exam: {result.exam_year} {result.subject}")

    p_score = doc.add_paragraph()
    p_score.alignment = 1
    p_score.add_run(
        f"Score: {result.score} / {result.total_questions} ({format_percentage(result.percentage)})"
    ).bold = True
    p_score.add_run(f" | Status: {classify_single(result.percentage).upper()}")
    doc.add_paragraph(f"Date: {format_date(result.timestamp)}").alignment = 1

    doc.add_paragraph("_" * 50).alignment = 1  # Divider

    doc.add_heading("Question Breakdown", level=1)
    if result.details:
        _add_breakdown(doc, result)
    else:
        doc.add_paragraph().add_run("Detailed answers not available for this record.").italic = True

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()
