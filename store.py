"""
Document stores backing the tracker.

Both stores speak the same small collection API (insert / find / find_one /
replace / delete) over plain dicts carrying an "id" key, plus a transaction()
context manager and on_commit() hook for work that must only happen once the
surrounding writes are durable.
"""
import copy
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from bson.codec_options import CodecOptions, TypeCodec, TypeEncoder, TypeRegistry
from bson.decimal128 import Decimal128
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from errors import ConflictError, ValidationError
from schemas import new_id

logger = logging.getLogger(__name__)

Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]


class DecimalCodec(TypeCodec):
    python_type = Decimal
    bson_type = Decimal128

    def transform_python(self, value):
        return Decimal128(value)

    def transform_bson(self, value):
        return value.to_decimal()


class DateEncoder(TypeEncoder):
    python_type = date

    def transform_python(self, value):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)


CODEC_OPTIONS = CodecOptions(tz_aware=True, type_registry=TypeRegistry([DecimalCodec(), DateEncoder()]))


def check_limit(limit: Optional[int]) -> None:
    if limit is not None and limit < 1:
        raise ValidationError(f"Limit must be a positive integer, got {limit}")


class MemoryStore:
    """Keyed in-process store; transactions keep an undo log and replay it on failure."""

    def __init__(self):
        self._collections: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if getattr(self._local, "undo", None) is not None:
                yield
                return
            undo: List[Tuple[str, str, Optional[dict]]] = []
            callbacks: List[Callable[[], None]] = []
            self._local.undo = undo
            self._local.callbacks = callbacks
            try:
                yield
            except BaseException:
                self._rollback(undo)
                raise
            finally:
                self._local.undo = None
                self._local.callbacks = None
        for callback in callbacks:
            callback()

    def on_commit(self, callback: Callable[[], None]) -> None:
        callbacks = getattr(self._local, "callbacks", None)
        if callbacks is None:
            callback()
        else:
            callbacks.append(callback)

    def _journal(self, collection: str, doc_id: str) -> None:
        undo = getattr(self._local, "undo", None)
        if undo is not None:
            undo.append((collection, doc_id, self._collection(collection).get(doc_id)))

    def _rollback(self, undo: List[Tuple[str, str, Optional[dict]]]) -> None:
        for collection, doc_id, previous in reversed(undo):
            docs = self._collection(collection)
            if previous is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = previous
        logger.debug("Rolled back %d writes", len(undo))

    def _collection(self, name: str) -> Dict[str, dict]:
        return self._collections.setdefault(name, {})

    @staticmethod
    def _matches(doc: dict, filter_dict: Optional[Filter]) -> bool:
        return all(doc.get(k) == v for k, v in (filter_dict or {}).items())

    def insert(self, collection: str, doc: dict) -> str:
        with self._lock:
            docs = self._collection(collection)
            doc = copy.deepcopy(doc)
            doc_id = doc.get("id") or new_id()
            if doc_id in docs:
                raise ConflictError(f"Duplicate id {doc_id} in {collection}")
            doc["id"] = doc_id
            self._journal(collection, doc_id)
            docs[doc_id] = doc
            return doc_id

    def find(self, collection: str, filter_dict: Optional[Filter] = None,
             sort: Optional[Sort] = None, limit: Optional[int] = None) -> List[dict]:
        check_limit(limit)
        with self._lock:
            docs = [copy.deepcopy(d) for d in self._collection(collection).values()
                    if self._matches(d, filter_dict)]
        for key, direction in reversed(list(sort or [])):
            docs.sort(key=lambda d: (d.get(key) is None, d.get(key)), reverse=direction == DESCENDING)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def find_one(self, collection: str, filter_dict: Filter) -> Optional[dict]:
        found = self.find(collection, filter_dict, limit=1)
        return found[0] if found else None

    def replace(self, collection: str, filter_dict: Filter, doc: dict, upsert: bool = False) -> None:
        with self._lock:
            docs = self._collection(collection)
            existing = next((d for d in docs.values() if self._matches(d, filter_dict)), None)
            if existing is None:
                if not upsert:
                    raise ConflictError(f"No {collection} document matches {filter_dict}")
                self.insert(collection, {k: v for k, v in doc.items() if k != "id"})
                return
            doc = copy.deepcopy(doc)
            doc["id"] = existing["id"]
            self._journal(collection, existing["id"])
            docs[existing["id"]] = doc

    def delete(self, collection: str, filter_dict: Filter) -> int:
        with self._lock:
            docs = self._collection(collection)
            doomed = [k for k, d in docs.items() if self._matches(d, filter_dict)]
            for key in doomed:
                self._journal(collection, key)
                del docs[key]
            return len(doomed)

    def collection_names(self) -> List[str]:
        return sorted(self._collections)


class MongoStore:
    """pymongo-backed store. Transactions need a replica set deployment."""

    def __init__(self, db):
        self.db = db
        self.client = db.client
        self._local = threading.local()

    def ensure_indexes(self) -> None:
        self.db["profile"].create_index([("user_id", ASCENDING)], unique=True)
        self.db["leaderboardentry"].create_index([("user_id", ASCENDING)], unique=True)
        self.db["activityrecord"].create_index([("user_id", ASCENDING), ("logged_at", DESCENDING)])
        self.db["certificate"].create_index([("token_id", ASCENDING)], unique=True)

    def _session(self):
        return getattr(self._local, "session", None)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._session() is not None:
            yield
            return
        callbacks: List[Callable[[], None]] = []
        with self.client.start_session() as session:
            with session.start_transaction():
                self._local.session = session
                self._local.callbacks = callbacks
                try:
                    yield
                finally:
                    self._local.session = None
                    self._local.callbacks = None
        for callback in callbacks:
            callback()

    def on_commit(self, callback: Callable[[], None]) -> None:
        callbacks = getattr(self._local, "callbacks", None)
        if callbacks is None:
            callback()
        else:
            callbacks.append(callback)

    def _coll(self, name: str):
        return self.db.get_collection(name, codec_options=CODEC_OPTIONS)

    @staticmethod
    def _query(filter_dict: Optional[Filter]) -> Filter:
        query = dict(filter_dict or {})
        if "id" in query:
            query["_id"] = query.pop("id")
        return query

    @staticmethod
    def _from_doc(doc: dict) -> dict:
        doc["id"] = str(doc.pop("_id"))
        return doc

    def insert(self, collection: str, doc: dict) -> str:
        doc = dict(doc)
        doc["_id"] = doc.pop("id", None) or new_id()
        try:
            self._coll(collection).insert_one(doc, session=self._session())
        except DuplicateKeyError as exc:
            raise ConflictError(f"Duplicate key in {collection}: {exc.details}") from exc
        return doc["_id"]

    def find(self, collection: str, filter_dict: Optional[Filter] = None,
             sort: Optional[Sort] = None, limit: Optional[int] = None) -> List[dict]:
        check_limit(limit)
        cursor = self._coll(collection).find(self._query(filter_dict), session=self._session())
        if sort:
            cursor = cursor.sort(list(sort))
        if limit is not None:
            cursor = cursor.limit(limit)
        return [self._from_doc(d) for d in cursor]

    def find_one(self, collection: str, filter_dict: Filter) -> Optional[dict]:
        doc = self._coll(collection).find_one(self._query(filter_dict), session=self._session())
        return self._from_doc(doc) if doc else None

    def replace(self, collection: str, filter_dict: Filter, doc: dict, upsert: bool = False) -> None:
        doc = {k: v for k, v in doc.items() if k != "id"}
        result = self._coll(collection).replace_one(
            self._query(filter_dict), doc, upsert=upsert, session=self._session()
        )
        if not upsert and result.matched_count == 0:
            raise ConflictError(f"No {collection} document matches {filter_dict}")

    def delete(self, collection: str, filter_dict: Filter) -> int:
        result = self._coll(collection).delete_many(self._query(filter_dict), session=self._session())
        return result.deleted_count

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()
