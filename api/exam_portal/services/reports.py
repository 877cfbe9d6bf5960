"""
Report Exporter
Turns stored results into downloadable .xlsx, Markdown and .docx reports.
"""
import logging
import time
from typing import Iterable, List, Optional, Tuple

from exam_portal.errors import ValidationError
from exam_portal.schemas import ExamKey, Result
from exam_portal.services.doc_generator import generate_result_docx
from exam_portal.services.results import ResultRepository
from exam_portal.services.tabular import (
    encode_results_markdown,
    encode_results_table,
    encode_single_result_markdown,
    encode_single_result_table,
    max_question_count,
    result_column_widths,
    single_result_column_widths,
    write_workbook,
)

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MARKDOWN_MEDIA_TYPE = "text/markdown"


def _stamp() -> int:
    return int(time.time() * 1000)


def single_result_basename(result: Result) -> str:
    return f"exam-result-{result.exam_year}-{result.user_name or 'student'}-{_stamp()}"


class ReportExporter:
    def __init__(self, results: ResultRepository):
        self.results = results

    def collect(self, keys: Optional[Iterable[ExamKey]] = None) -> List[Result]:
        """
        Results for the given exam keys (all results when no keys are given).

        Raises:
            ValidationError: If nothing matches.
        """
        results = self.results.list_by_exam_keys(keys)
        if not results:
            raise ValidationError("No results to export")
        return results

    def export_table(self, keys: Optional[Iterable[ExamKey]] = None) -> Tuple[str, bytes]:
        results = self.collect(keys)
        max_questions = max_question_count(results)
        rows = encode_results_table(results, max_questions)
        content = write_workbook(rows, "Exam Results", result_column_widths(max_questions))
        logger.info(f"[Export] Wrote {len(rows)} result row(s) with {max_questions} answer column(s)")
        return f"all-exam-results-{_stamp()}.xlsx", content

    def export_markdown(self, keys: Optional[Iterable[ExamKey]] = None) -> Tuple[str, str]:
        results = self.collect(keys)
        logger.info(f"[Export] Wrote Markdown report for {len(results)} result(s)")
        return f"all-exam-results-{_stamp()}.md", encode_results_markdown(results)

    def export_single_table(self, result: Result) -> Tuple[str, bytes]:
        content = write_workbook(
            encode_single_result_table(result),
            "Result",
            single_result_column_widths(result.total_questions),
        )
        return f"{single_result_basename(result)}.xlsx", content

    def export_single_markdown(self, result: Result) -> Tuple[str, str]:
        return f"{single_result_basename(result)}.md", encode_single_result_markdown(result)

    def export_single_docx(self, result: Result) -> Tuple[str, bytes]:
        return f"{single_result_basename(result)}.docx", generate_result_docx(result)
