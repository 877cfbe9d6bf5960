"""
Storage Service
Document store (collections of JSON documents addressed by id) and the local
flag store holding small preference lists such as archived exam ids.
"""
import copy
import functools
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pymongo import DESCENDING, MongoClient, ReplaceOne
from pymongo.errors import PyMongoError

from exam_portal.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """
    Key-value document store reachable by collection name and document id.

    Every single-document write is atomic. Batches are not transactional.
    Implementations raise StoreUnavailable for any backend failure.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def find(
        self,
        collection: str,
        filters: Optional[Mapping[str, Any]] = None,
        sort_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[dict]:
        ...

    @abstractmethod
    def put(self, collection: str, doc_id: str, document: Mapping[str, Any]) -> None:
        """Create or replace one document."""

    @abstractmethod
    def put_many(self, collection: str, documents: Mapping[str, Mapping[str, Any]]) -> int:
        """Create or replace several documents; returns how many were written."""

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> bool:
        """Set top-level fields on an existing document; False if it does not exist."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def delete_many(self, collection: str, filters: Mapping[str, Any]) -> int:
        """Delete every document matching all filters; returns confirmed deletions."""

    def count(self, collection: str) -> int:
        return len(self.find(collection))


def _translate_errors(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except PyMongoError as e:
            logger.error(f"[Store] {method.__name__} failed: {e}")
            raise StoreUnavailable(str(e)) from e
    return wrapper


class MongoDocumentStore(DocumentStore):
    """MongoDB-backed store. The document id is kept in ``_id`` and hidden on reads."""

    def __init__(self, url: str, database: str, timeout_ms: int = 5000, client: Optional[MongoClient] = None):
        self.client = client or MongoClient(
            url,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        self.db = self.client[database]

    @_translate_errors
    def get(self, collection, doc_id):
        return self.db[collection].find_one({"_id": doc_id}, {"_id": False})

    @_translate_errors
    def find(self, collection, filters=None, sort_by=None, descending=False):
        cursor = self.db[collection].find(dict(filters or {}), {"_id": False})
        if sort_by:
            cursor = cursor.sort(sort_by, DESCENDING if descending else 1)
        return list(cursor)

    @_translate_errors
    def put(self, collection, doc_id, document):
        self.db[collection].replace_one({"_id": doc_id}, dict(document), upsert=True)

    @_translate_errors
    def put_many(self, collection, documents):
        if not documents:
            return 0
        requests = [
            ReplaceOne({"_id": doc_id}, dict(document), upsert=True)
            for doc_id, document in documents.items()
        ]
        result = self.db[collection].bulk_write(requests, ordered=True)
        return result.upserted_count + result.matched_count

    @_translate_errors
    def update(self, collection, doc_id, fields):
        result = self.db[collection].update_one({"_id": doc_id}, {"$set": dict(fields)})
        return result.matched_count > 0

    @_translate_errors
    def delete(self, collection, doc_id):
        return self.db[collection].delete_one({"_id": doc_id}).deleted_count > 0

    @_translate_errors
    def delete_many(self, collection, filters):
        return self.db[collection].delete_many(dict(filters)).deleted_count

    @_translate_errors
    def count(self, collection):
        return self.db[collection].count_documents({})


class MemoryDocumentStore(DocumentStore):
    """In-process store used in development mode and tests."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.Lock()

    def _collection(self, name: str) -> Dict[str, dict]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _matches(document: dict, filters: Mapping[str, Any]) -> bool:
        return all(document.get(field) == value for field, value in filters.items())

    def get(self, collection, doc_id):
        with self._lock:
            document = self._collection(collection).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def find(self, collection, filters=None, sort_by=None, descending=False):
        with self._lock:
            documents = [
                copy.deepcopy(doc)
                for doc in self._collection(collection).values()
                if self._matches(doc, filters or {})
            ]
        if sort_by:
            documents.sort(key=lambda doc: doc.get(sort_by) or "", reverse=descending)
        return documents

    def put(self, collection, doc_id, document):
        with self._lock:
            self._collection(collection)[doc_id] = copy.deepcopy(dict(document))

    def put_many(self, collection, documents):
        with self._lock:
            target = self._collection(collection)
            for doc_id, document in documents.items():
                target[doc_id] = copy.deepcopy(dict(document))
        return len(documents)

    def update(self, collection, doc_id, fields):
        with self._lock:
            document = self._collection(collection).get(doc_id)
            if document is None:
                return False
            document.update(copy.deepcopy(dict(fields)))
            return True

    def delete(self, collection, doc_id):
        with self._lock:
            return self._collection(collection).pop(doc_id, None) is not None

    def delete_many(self, collection, filters):
        with self._lock:
            target = self._collection(collection)
            doomed = [doc_id for doc_id, doc in target.items() if self._matches(doc, filters)]
            for doc_id in doomed:
                del target[doc_id]
        return len(doomed)


class FlagStore(ABC):
    """Local durable store for small lists of ids."""

    @abstractmethod
    def load(self) -> Dict[str, List[str]]:
        ...

    @abstractmethod
    def save(self, data: Dict[str, List[str]]) -> None:
        ...

    def get_list(self, key: str) -> List[str]:
        return list(self.load().get(key, []))

    def set_list(self, key: str, values: List[str]) -> None:
        data = self.load()
        data[key] = list(values)
        self.save(data)


class JsonFlagStore(FlagStore):
    """
    JSON-file flag store.

    A missing or malformed file reads as empty; the next save rewrites it.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, List[str]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"[Store] Ignoring unreadable flag file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"[Store] Ignoring malformed flag file {self.path}")
            return {}
        return {key: list(value) for key, value in data.items() if isinstance(value, list)}

    def save(self, data: Dict[str, List[str]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp_path.replace(self.path)


class MemoryFlagStore(FlagStore):
    def __init__(self, initial: Optional[Dict[str, List[str]]] = None):
        self._data = copy.deepcopy(initial or {})

    def load(self) -> Dict[str, List[str]]:
        return copy.deepcopy(self._data)

    def save(self, data: Dict[str, List[str]]) -> None:
        self._data = copy.deepcopy(data)
