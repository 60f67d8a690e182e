"""Document storage for storefront.

Each collection is a JSON file under the data directory. All access goes
through a Session, which holds an exclusive lock on the data directory for its
lifetime and writes the collections it changed only when it exits cleanly.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from .config import get_settings

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
LOCK_FILE = ".store.lock"

USERS = "users"
COLLECTIONS = "collections"
PRODUCTS = "products"
CARTS = "carts"
ORDERS = "orders"
PAYMENTS = "payments"

ALL_COLLECTIONS = (USERS, COLLECTIONS, PRODUCTS, CARTS, ORDERS, PAYMENTS)


def _matches(doc: dict[str, Any], criteria: dict[str, Any]) -> bool:
    return all(doc.get(key) == value for key, value in criteria.items())


class Session:
    """A unit of work over the document collections.

    Documents returned by find/get are copies; changes are made through
    insert/update/delete so the session knows which files to rewrite.
    """

    def __init__(self, database: "Database"):
        self._database = database
        self._cache: dict[str, list[dict[str, Any]]] = {}
        self._dirty: set[str] = set()

    def _docs(self, collection: str) -> list[dict[str, Any]]:
        if collection not in self._cache:
            self._cache[collection] = self._database._load_collection(collection)
        return self._cache[collection]

    def _mark_dirty(self, collection: str) -> None:
        self._dirty.add(collection)

    def find(
        self,
        collection: str,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
        **criteria: Any,
    ) -> list[dict[str, Any]]:
        """Return copies of all documents matching criteria (and predicate, if given)."""
        result = []
        for doc in self._docs(collection):
            if not _matches(doc, criteria):
                continue
            if predicate is not None and not predicate(doc):
                continue
            result.append(copy.deepcopy(doc))
        return result

    def find_one(self, collection: str, **criteria: Any) -> dict[str, Any] | None:
        for doc in self._docs(collection):
            if _matches(doc, criteria):
                return copy.deepcopy(doc)
        return None

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self.find_one(collection, id=doc_id)

    def count(self, collection: str, **criteria: Any) -> int:
        return sum(1 for doc in self._docs(collection) if _matches(doc, criteria))

    def insert(self, collection: str, doc: dict[str, Any]) -> None:
        if "id" not in doc:
            raise ValueError(f"Document for '{collection}' has no id")
        self._docs(collection).append(copy.deepcopy(doc))
        self._mark_dirty(collection)

    def replace(self, collection: str, doc: dict[str, Any]) -> None:
        """Replace the stored document with the same id.

        Raises:
            KeyError: If no document has that id.
        """
        docs = self._docs(collection)
        for i, existing in enumerate(docs):
            if existing["id"] == doc["id"]:
                docs[i] = copy.deepcopy(doc)
                self._mark_dirty(collection)
                return
        raise KeyError(f"{collection}/{doc['id']}")

    def update(self, collection: str, doc_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply changes to one document and return a copy of the result.

        Raises:
            KeyError: If no document has that id.
        """
        for doc in self._docs(collection):
            if doc["id"] == doc_id:
                doc.update(copy.deepcopy(changes))
                self._mark_dirty(collection)
                return copy.deepcopy(doc)
        raise KeyError(f"{collection}/{doc_id}")

    def delete(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        docs = self._docs(collection)
        for i, doc in enumerate(docs):
            if doc["id"] == doc_id:
                self._mark_dirty(collection)
                return docs.pop(i)
        return None

    def commit(self) -> None:
        for collection in sorted(self._dirty):
            self._database._save_collection(collection, self._cache[collection])
        self._dirty.clear()


class Database:
    """Manages the on-disk document collections."""

    def __init__(self, data_dir: Path | None = None):
        """
        Initialize Database.

        Args:
            data_dir: Override data directory (for testing).
        """
        self.data_dir = Path(data_dir) if data_dir else get_settings().data_dir

    def _ensure_dir(self) -> None:
        """Ensure data directory exists."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _collection_path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the data directory for read-modify-write operations."""
        self._ensure_dir()
        lock_path = self.data_dir / LOCK_FILE
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load_collection(self, collection: str) -> list[dict[str, Any]]:
        """Load a collection's documents from disk."""
        path = self._collection_path(collection)
        if not path.exists():
            return []

        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data.get("documents", [])

    def _save_collection(self, collection: str, documents: list[dict[str, Any]]) -> None:
        """Save a collection to disk atomically."""
        self._ensure_dir()

        data = {"schema_version": SCHEMA_VERSION, "documents": documents}
        fd, temp_path = tempfile.mkstemp(
            dir=self.data_dir, prefix=f".{collection}_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(temp_path, self._collection_path(collection))
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Open a locked session.

        Changes are written when the block exits normally and discarded if it
        raises, so a failed operation leaves every collection untouched.
        """
        with self._lock():
            session = Session(self)
            try:
                yield session
            except Exception:
                if session._dirty:
                    logger.debug(
                        "Discarding uncommitted changes to %s", ", ".join(sorted(session._dirty))
                    )
                raise
            session.commit()

    def is_writable(self) -> bool:
        """Check that the data directory can be locked and listed."""
        with self._lock():
            return os.access(self.data_dir, os.W_OK)
