"""
Question Repository
Exams and their questions: built-in catalogue merged with stored exams, the
archive overlay, and bulk import from spreadsheets.
"""
import logging
import re
from datetime import date
from typing import Dict, List, Optional

from pydantic import ValidationError as SchemaError

from exam_portal.builtin import BUILTIN_EXAM_IDS, builtin_exams
from exam_portal.config import (
    ARCHIVED_EXAMS_KEY,
    DEFAULT_IMPORTED_SUBJECT,
    DELETED_BUILTIN_KEY,
    EXAMS_COLLECTION,
)
from exam_portal.errors import ExamNotFound, StoreUnavailable, ValidationError
from exam_portal.schemas import Exam, ExamMetadataUpdate, ExamStatus, ImportReport, Question
from exam_portal.services.store import DocumentStore, FlagStore
from exam_portal.services.tabular import decode_question_rows, read_rows

logger = logging.getLogger(__name__)


def infer_exam_year(exam_id: str, today: Optional[date] = None) -> int:
    """Year from the digits in an exam id ("math-2024" -> 2024), else the current year."""
    digits = re.sub(r"\D", "", exam_id)
    if digits:
        return int(digits)
    return (today or date.today()).year


class QuestionRepository:
    def __init__(self, store: DocumentStore, flags: FlagStore):
        self.store = store
        self.flags = flags

    # --- Overlay state ---

    def archived_ids(self) -> List[str]:
        return self.flags.get_list(ARCHIVED_EXAMS_KEY)

    def deleted_builtin_ids(self) -> List[str]:
        return self.flags.get_list(DELETED_BUILTIN_KEY)

    def _apply_overlay(self, exams: List[Exam]) -> List[Exam]:
        archived = set(self.archived_ids())
        return [
            exam.model_copy(update={"status": ExamStatus.ARCHIVED}) if exam.id in archived else exam
            for exam in exams
        ]

    def _visible_builtins(self) -> List[Exam]:
        deleted = set(self.deleted_builtin_ids())
        return [exam for exam in builtin_exams() if exam.id not in deleted]

    def _stored_exams(self) -> List[Exam]:
        exams = []
        for document in self.store.find(EXAMS_COLLECTION):
            try:
                exams.append(Exam.model_validate(document))
            except SchemaError as e:
                logger.warning(f"[Exams] Ignoring malformed exam document {document.get('id')!r}: {e}")
        return exams

    # --- Reads ---

    def list_exams(self) -> List[Exam]:
        """
        All exams, newest year first.

        Stored exams replace built-ins with the same id. If the store is
        unreachable the built-in catalogue is returned instead.
        """
        merged: Dict[str, Exam] = {exam.id: exam for exam in self._visible_builtins()}
        try:
            stored = self._stored_exams()
        except StoreUnavailable as e:
            logger.warning(f"[Exams] Store unavailable, showing built-in exams only: {e}")
            stored = []
        for exam in stored:
            merged[exam.id] = exam

        exams = self._apply_overlay(list(merged.values()))
        return sorted(exams, key=lambda exam: exam.year, reverse=True)

    def get_exam(self, exam_id: str) -> Exam:
        """
        Raises:
            ExamNotFound: If neither the store nor the built-in catalogue has it.
        """
        for exam in self.list_exams():
            if exam.id == exam_id:
                return exam
        raise ExamNotFound(exam_id)

    def get_exam_questions(self, exam_id: str) -> List[Question]:
        """Questions of an exam; empty for unknown exams or exams without questions."""
        try:
            document = self.store.get(EXAMS_COLLECTION, exam_id)
        except StoreUnavailable as e:
            logger.warning(f"[Exams] Store unavailable while loading questions for {exam_id}: {e}")
            document = None

        if document is not None:
            try:
                return Exam.model_validate(document).questions
            except SchemaError as e:
                logger.warning(f"[Exams] Malformed exam document {exam_id!r}: {e}")
                return []

        for exam in self._visible_builtins():
            if exam.id == exam_id:
                return exam.questions

        logger.info(f"[Exams] No such exam: {exam_id}")
        return []

    # --- Writes ---

    def upsert_exam(self, exam_id: str, exam: Exam) -> Exam:
        """Create or replace the exam stored under exam_id."""
        if exam.id != exam_id:
            exam = exam.model_copy(update={"id": exam_id})
        self.store.put(EXAMS_COLLECTION, exam_id, exam.to_document())
        logger.info(f"[Exams] Saved exam {exam_id} ({len(exam.questions)} questions)")
        return exam

    def update_exam_metadata(self, exam_id: str, changes: ExamMetadataUpdate) -> Exam:
        """
        Partial year/subject edit. Editing a built-in exam stores an override copy.

        Raises:
            ExamNotFound: If the exam does not exist.
        """
        fields = changes.model_dump(exclude_none=True)
        if self.store.get(EXAMS_COLLECTION, exam_id) is not None:
            if fields:
                self.store.update(EXAMS_COLLECTION, exam_id, fields)
            return Exam.model_validate(self.store.get(EXAMS_COLLECTION, exam_id))

        builtin = next((exam for exam in builtin_exams() if exam.id == exam_id), None)
        if builtin is None or exam_id in self.deleted_builtin_ids():
            raise ExamNotFound(exam_id)
        return self.upsert_exam(exam_id, builtin.model_copy(update=fields))

    def toggle_archive(self, exam_id: str) -> bool:
        """Flips the exam's archive flag; returns True if it is now archived."""
        archived = self.archived_ids()
        if exam_id in archived:
            archived.remove(exam_id)
            now_archived = False
        else:
            archived.append(exam_id)
            now_archived = True
        self.flags.set_list(ARCHIVED_EXAMS_KEY, archived)
        return now_archived

    def delete_exam(self, exam_id: str) -> bool:
        """Removes an exam. Built-in exams are hidden via the deleted-built-in list."""
        removed = self.store.delete(EXAMS_COLLECTION, exam_id)
        if exam_id in BUILTIN_EXAM_IDS:
            deleted = self.deleted_builtin_ids()
            if exam_id not in deleted:
                deleted.append(exam_id)
                self.flags.set_list(DELETED_BUILTIN_KEY, deleted)
            removed = True
        return removed

    # --- Bulk import ---

    def import_questions(self, content: bytes) -> ImportReport:
        """
        Imports a question spreadsheet, one exam per distinct ExamID.

        Raises:
            FormatError: If the file is not a readable spreadsheet.
            ValidationError: If no row produced a valid question.
            StoreUnavailable: If saving an exam fails.
        """
        decoded = decode_question_rows(read_rows(content))
        if not decoded.groups:
            raise ValidationError("No valid questions found in file.")

        for exam_id, questions in decoded.groups.items():
            exam = Exam(
                id=exam_id,
                year=infer_exam_year(exam_id),
                subject=DEFAULT_IMPORTED_SUBJECT,
                status=ExamStatus.AVAILABLE,
                total_questions=len(questions),
                questions=questions,
            )
            self.upsert_exam(exam_id, exam)

        logger.info(
            f"[Import] Uploaded {decoded.question_count} questions across "
            f"{len(decoded.groups)} exam(s), skipped {len(decoded.skipped)} row(s)"
        )
        return ImportReport(
            exam_ids=list(decoded.groups),
            question_count=decoded.question_count,
            skipped=decoded.skipped,
        )
