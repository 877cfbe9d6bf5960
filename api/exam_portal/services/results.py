"""
Result Repository
Append-only store of completed attempts, filtered and deleted by exam key.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from pydantic import ValidationError as SchemaError

from exam_portal.config import RESULTS_COLLECTION
from exam_portal.errors import StoreUnavailable
from exam_portal.schemas import ExamKey, ExamKeySummary, Result, ResultDraft
from exam_portal.services.store import DocumentStore

logger = logging.getLogger(__name__)


def utc_timestamp() -> str:
    """Current time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class ResultRepository:
    def __init__(
        self,
        store: DocumentStore,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        clock: Callable[[], str] = utc_timestamp,
    ):
        self.store = store
        self.id_factory = id_factory
        self.clock = clock

    def append(self, draft: ResultDraft) -> Result:
        """
        Stamps id and timestamp, persists, and returns the stored result.

        Raises:
            StoreUnavailable: If the write fails. Nothing is stored in that case.
        """
        result = Result(**draft.model_dump(), id=self.id_factory(), timestamp=self.clock())
        self.store.put(RESULTS_COLLECTION, result.id, result.to_document())
        logger.info(
            f"[Results] Saved result {result.id} for {result.user_name} "
            f"({result.exam_key.key}: {result.score}/{result.total_questions})"
        )
        return result

    def get(self, result_id: str) -> Optional[Result]:
        document = self.store.get(RESULTS_COLLECTION, result_id)
        return Result.model_validate(document) if document is not None else None

    def list_all(self) -> List[Result]:
        """All results, newest first. Empty if the store is unreachable."""
        try:
            documents = self.store.find(RESULTS_COLLECTION, sort_by="timestamp", descending=True)
        except StoreUnavailable as e:
            logger.warning(f"[Results] Store unavailable, returning no results: {e}")
            return []

        results = []
        for document in documents:
            try:
                results.append(Result.model_validate(document))
            except SchemaError as e:
                logger.warning(f"[Results] Ignoring malformed result {document.get('id')!r}: {e}")
        results.sort(key=lambda result: result.timestamp, reverse=True)
        return results

    def list_by_exam_keys(self, keys: Optional[Iterable[ExamKey]]) -> List[Result]:
        """Results whose (year, subject) is among keys; all results if keys is empty."""
        wanted = set(keys or ())
        results = self.list_all()
        if not wanted:
            return results
        return [result for result in results if result.exam_key in wanted]

    def list_by_user(self, user_name: str) -> List[Result]:
        return [result for result in self.list_all() if result.user_name == user_name]

    def delete_by_exam_keys(self, keys: Iterable[ExamKey]) -> int:
        """
        Deletes every result matching one of the keys exactly.

        Returns:
            Number of deletions the store confirmed.

        Raises:
            StoreUnavailable: If a delete fails; earlier keys stay deleted.
        """
        deleted = 0
        for key in dict.fromkeys(keys):
            count = self.store.delete_many(
                RESULTS_COLLECTION, {"examYear": key.year, "subject": key.subject}
            )
            logger.info(f"[Results] Deleted {count} result(s) for {key.key}")
            deleted += count
        return deleted

    def count_all(self) -> int:
        return len(self.list_all())

    def unique_exam_keys(self) -> List[ExamKeySummary]:
        """Distinct exam keys present in results, newest year first."""
        seen = {}
        for result in self.list_all():
            key = result.exam_key
            if key not in seen:
                seen[key] = ExamKeySummary(year=key.year, subject=key.subject, key=key.key)
        return sorted(seen.values(), key=lambda summary: summary.year, reverse=True)
