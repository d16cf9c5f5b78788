"""Document store used by the game engine.

Collections hold pydantic documents keyed by ``id``. Reads always return deep
copies so a caller can mutate freely and publish its changes through a
:class:`UnitOfWork`; nothing is visible to other callers until commit.
"""

import logging
import random
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, TypeAdapter

from .database import get_db_connection, init_db
from .models import Achievement, GameSession, Reward, Task, UserAdapter, Word

logger = logging.getLogger(__name__)

USERS = "users"
WORDS = "words"
SESSIONS = "sessions"
ACHIEVEMENTS = "achievements"
REWARDS = "rewards"
TASKS = "tasks"

COLLECTIONS: Dict[str, TypeAdapter] = {
    USERS: UserAdapter,
    WORDS: TypeAdapter(Word),
    SESSIONS: TypeAdapter(GameSession),
    ACHIEVEMENTS: TypeAdapter(Achievement),
    REWARDS: TypeAdapter(Reward),
    TASKS: TypeAdapter(Task),
}

Predicate = Callable[[Any], bool]


def _matches(doc: BaseModel, where: Optional[Predicate], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if getattr(doc, key, None) != value:
            return False
    return where is None or where(doc)


class DocumentStore(ABC):
    """Abstract Base Class for the persistence backends."""

    @abstractmethod
    def _load(self, collection: str) -> List[BaseModel]:
        """Returns copies of every document of a collection in insertion order."""

    @abstractmethod
    def write_many(self, docs: Iterable[Tuple[str, BaseModel]]) -> None:
        """Upserts all documents atomically."""

    def get(self, collection: str, doc_id: str) -> Optional[BaseModel]:
        for doc in self._load(collection):
            if doc.id == doc_id:
                return doc
        return None

    def find(
        self, collection: str, where: Optional[Predicate] = None, **filters: Any
    ) -> List[BaseModel]:
        return [doc for doc in self._load(collection) if _matches(doc, where, filters)]

    def count(self, collection: str, where: Optional[Predicate] = None, **filters: Any) -> int:
        return len(self.find(collection, where, **filters))

    def sample(
        self, collection: str, size: int, where: Optional[Predicate] = None, **filters: Any
    ) -> List[BaseModel]:
        """Random sample without replacement; shorter when the pool is smaller."""
        pool = self.find(collection, where, **filters)
        return random.sample(pool, min(size, len(pool)))

    def insert(self, collection: str, doc: BaseModel) -> str:
        self.write_many([(collection, doc)])
        return doc.id

    def update(self, collection: str, doc: BaseModel) -> None:
        self.write_many([(collection, doc)])


class InMemoryStore(DocumentStore):
    def __init__(self):
        self._collections: Dict[str, Dict[str, BaseModel]] = {name: {} for name in COLLECTIONS}
        self._lock = threading.Lock()

    def _load(self, collection: str) -> List[BaseModel]:
        with self._lock:
            docs = list(self._collections[collection].values())
        return [doc.model_copy(deep=True) for doc in docs]

    def get(self, collection: str, doc_id: str) -> Optional[BaseModel]:
        with self._lock:
            doc = self._collections[collection].get(doc_id)
        return doc.model_copy(deep=True) if doc is not None else None

    def write_many(self, docs: Iterable[Tuple[str, BaseModel]]) -> None:
        copies = [(collection, doc.model_copy(deep=True)) for collection, doc in docs]
        with self._lock:
            for collection, doc in copies:
                self._collections[collection][doc.id] = doc


class SQLiteStore(DocumentStore):
    """Stores every collection as JSON rows of the ``documents`` table."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path
        init_db(db_path)

    def _load(self, collection: str) -> List[BaseModel]:
        adapter = COLLECTIONS[collection]
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT body FROM documents WHERE collection = ? ORDER BY seq",
                (collection,),
            ).fetchall()
        finally:
            conn.close()
        return [adapter.validate_json(row["body"]) for row in rows]

    def get(self, collection: str, doc_id: str) -> Optional[BaseModel]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return COLLECTIONS[collection].validate_json(row["body"])

    def write_many(self, docs: Iterable[Tuple[str, BaseModel]]) -> None:
        conn = get_db_connection(self.db_path)
        try:
            with conn:
                for collection, doc in docs:
                    conn.execute(
                        """
                        INSERT INTO documents (collection, id, seq, body)
                        VALUES (?, ?, (SELECT COALESCE(MAX(seq), 0) + 1
                                       FROM documents WHERE collection = ?), ?)
                        ON CONFLICT(collection, id) DO UPDATE SET body = excluded.body
                        """,
                        (collection, doc.id, collection, doc.model_dump_json()),
                    )
        finally:
            conn.close()


def build_store(backend: str, db_path: Optional[str] = None) -> DocumentStore:
    if backend == "sqlite":
        logger.info(f"Using SQLite document store at {db_path or 'default path'}")
        return SQLiteStore(db_path)
    return InMemoryStore()


class UnitOfWork:
    """Stages document writes and commits them together.

    Used as a context manager: a clean exit commits, an exception drops every
    staged write.
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self._staged: Dict[Tuple[str, str], BaseModel] = {}

    def add(self, collection: str, doc: BaseModel) -> None:
        self._staged[(collection, doc.id)] = doc

    def commit(self) -> None:
        self.store.write_many(
            [(collection, doc) for (collection, _), doc in self._staged.items()]
        )
        self._staged.clear()

    def rollback(self) -> None:
        self._staged.clear()

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False


class AggregateLocks:
    """Per-aggregate mutexes keyed by ``"<collection>:<id>"``."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @contextmanager
    def hold(self, *keys: Optional[str]) -> Iterator[None]:
        # Sorted acquisition keeps two callers from deadlocking each other.
        ordered = sorted({key for key in keys if key})
        with self._guard:
            locks = [self._locks.setdefault(key, threading.RLock()) for key in ordered]
        for lock in locks:
            lock.acquire()
        try:
            yield
        finally:
            for lock in reversed(locks):
                lock.release()


def lock_key(collection: str, doc_id: Optional[str]) -> Optional[str]:
    return f"{collection}:{doc_id}" if doc_id else None
