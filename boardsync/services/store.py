"""TinyDB document store adapter

Documents live in collections addressed by slash-separated paths, the way a
managed document database nests sub-collections under their parent:

    boards/{board_id}
    boards/{board_id}/columns/{column_id}
    boards/{board_id}/columns/{column_id}/cards/{card_id}
    boards/{board_id}/columns/{column_id}/cards/{card_id}/comments/{comment_id}
    boards/{board_id}/columns/{column_id}/cards/{card_id}/checklists/{checklist_id}

Each collection path maps to one TinyDB table. The adapter offers single
document CRUD, filtered/ordered queries and all-or-nothing batches. There are
no cross-batch transactions and no locks.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from tinydb import TinyDB, Query, where
from tinydb.storages import MemoryStorage

from ..errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Placeholder replaced with the write time by the store"""

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


# =============================================================================
# Paths
# =============================================================================

def boards_path() -> str:
    return "boards"


def board_path(board_id: str) -> str:
    return f"{boards_path()}/{board_id}"


def columns_path(board_id: str) -> str:
    return f"{board_path(board_id)}/columns"


def column_path(board_id: str, column_id: str) -> str:
    return f"{columns_path(board_id)}/{column_id}"


def cards_path(board_id: str, column_id: str) -> str:
    return f"{column_path(board_id, column_id)}/cards"


def card_path(board_id: str, column_id: str, card_id: str) -> str:
    return f"{cards_path(board_id, column_id)}/{card_id}"


def comments_path(board_id: str, column_id: str, card_id: str) -> str:
    return f"{card_path(board_id, column_id, card_id)}/comments"


def checklists_path(board_id: str, column_id: str, card_id: str) -> str:
    return f"{card_path(board_id, column_id, card_id)}/checklists"


def split_path(path: str) -> Tuple[str, str]:
    """Split a document path into (collection path, document id)"""
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise StoreError(f"Not a document path: {path}")
    return "/".join(parts[:-1]), parts[-1]


# =============================================================================
# Queries and mutations
# =============================================================================

class Where(NamedTuple):
    """Query predicate: field, operator, value"""
    field: str
    op: str
    value: Any


class OrderBy(NamedTuple):
    field: str
    descending: bool = False


@dataclass
class Mutation:
    """One document write inside a batch"""
    op: str  # "create", "update" or "delete"
    path: str  # collection path for create, document path otherwise
    fields: Dict[str, Any] = field(default_factory=dict)
    doc_id: Optional[str] = None

    @classmethod
    def create(cls, collection_path: str, fields: dict, doc_id: str = None) -> "Mutation":
        return cls("create", collection_path, dict(fields), doc_id)

    @classmethod
    def update(cls, path: str, fields: dict) -> "Mutation":
        return cls("update", path, dict(fields))

    @classmethod
    def delete(cls, path: str) -> "Mutation":
        return cls("delete", path)


def _predicate(clause: Where):
    """Translate a Where clause into a TinyDB query"""
    test_field = where(clause.field)
    if clause.op == "==":
        return test_field == clause.value
    if clause.op == "!=":
        return test_field != clause.value
    if clause.op == "in":
        values = list(clause.value)
        return test_field.test(lambda v: v in values)
    if clause.op == "array-contains":
        return test_field.test(lambda v: isinstance(v, list) and clause.value in v)
    raise StoreError(f"Unsupported query operator: {clause.op}")


# =============================================================================
# Store
# =============================================================================

class DocumentStore:
    """Async document store contract consumed by the engine"""

    def new_id(self) -> str:
        raise NotImplementedError

    async def get(self, path: str) -> Optional[dict]:
        raise NotImplementedError

    async def query(
        self,
        collection_path: str,
        where: Iterable[Where] = (),
        order_by: Optional[OrderBy] = None
    ) -> List[dict]:
        raise NotImplementedError

    async def create(self, collection_path: str, fields: dict, doc_id: str = None) -> str:
        raise NotImplementedError

    async def update(self, path: str, fields: dict) -> None:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    async def batch(self, mutations: List[Mutation]) -> List[str]:
        raise NotImplementedError


class TinyDocumentStore(DocumentStore):
    """Document store backed by TinyDB (JSON file or in-memory)"""

    def __init__(self, db_path: Optional[Path] = None, max_batch_writes: int = 500):
        self.db_path = Path(db_path) if db_path else None
        self.max_batch_writes = max_batch_writes
        self.db: TinyDB = None

    def initialize(self):
        """Open the database connection (idempotent)"""
        if self.db is not None:
            return
        if self.db_path:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.db = TinyDB(str(self.db_path))
            logger.info(f"Document store opened: {self.db_path}")
        else:
            self.db = TinyDB(storage=MemoryStorage)
            logger.info("Document store opened in memory")

    def close(self):
        if self.db is not None:
            self.db.close()
            self.db = None

    def new_id(self) -> str:
        return str(uuid.uuid4())[:8]

    def timestamp(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _table(self, collection_path: str):
        self.initialize()
        return self.db.table(collection_path.strip("/"))

    def _resolve(self, fields: dict, now: str) -> dict:
        return {
            key: (now if value is SERVER_TIMESTAMP else value)
            for key, value in fields.items()
        }

    # -------------------------------------------------------------------------
    # Single-document operations
    # -------------------------------------------------------------------------

    def _get(self, path: str) -> Optional[dict]:
        collection, doc_id = split_path(path)
        doc = self._table(collection).get(Query().id == doc_id)
        return dict(doc) if doc is not None else None

    def _create(self, collection_path: str, fields: dict, doc_id: str, now: str) -> str:
        doc_id = doc_id or self.new_id()
        document = self._resolve(fields, now)
        document["id"] = doc_id
        document["created_at"] = now
        document["updated_at"] = now
        self._table(collection_path).insert(document)
        logger.debug(f"Created {collection_path}/{doc_id}")
        return doc_id

    def _update(self, path: str, fields: dict, now: str):
        collection, doc_id = split_path(path)
        updates = self._resolve(fields, now)
        updates.pop("id", None)
        updates["updated_at"] = now
        updated = self._table(collection).update(updates, Query().id == doc_id)
        if not updated:
            raise NotFoundError(f"Document not found: {path}", {"path": path})

    def _delete(self, path: str):
        collection, doc_id = split_path(path)
        self._table(collection).remove(Query().id == doc_id)
        logger.debug(f"Deleted {path}")

    async def get(self, path: str) -> Optional[dict]:
        try:
            return self._get(path)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to read {path}: {e}") from e

    async def query(
        self,
        collection_path: str,
        where: Iterable[Where] = (),
        order_by: Optional[OrderBy] = None
    ) -> List[dict]:
        try:
            table = self._table(collection_path)
            clauses = list(where)
            if clauses:
                condition = _predicate(clauses[0])
                for clause in clauses[1:]:
                    condition = condition & _predicate(clause)
                documents = table.search(condition)
            else:
                documents = table.all()
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to query {collection_path}: {e}") from e

        documents = [dict(doc) for doc in documents]
        if order_by:
            # Python's sort is stable, so ties keep insertion order
            present = [d for d in documents if d.get(order_by.field) is not None]
            missing = [d for d in documents if d.get(order_by.field) is None]
            present.sort(key=lambda d: d[order_by.field], reverse=order_by.descending)
            documents = present + missing
        return documents

    async def create(self, collection_path: str, fields: dict, doc_id: str = None) -> str:
        try:
            return self._create(collection_path, fields, doc_id, self.timestamp())
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to create document in {collection_path}: {e}") from e

    async def update(self, path: str, fields: dict) -> None:
        try:
            self._update(path, fields, self.timestamp())
        except (StoreError, NotFoundError):
            raise
        except Exception as e:
            raise StoreError(f"Failed to update {path}: {e}") from e

    async def delete(self, path: str) -> None:
        try:
            self._delete(path)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to delete {path}: {e}") from e

    # -------------------------------------------------------------------------
    # Atomic batch
    # -------------------------------------------------------------------------

    async def batch(self, mutations: List[Mutation]) -> List[str]:
        """Apply every mutation or none of them.

        Returns the ids of documents created by the batch, in order.
        """
        if not mutations:
            return []
        if len(mutations) > self.max_batch_writes:
            raise StoreError(
                f"Batch of {len(mutations)} writes exceeds the limit of {self.max_batch_writes}",
                {"size": len(mutations), "limit": self.max_batch_writes}
            )

        self.initialize()

        # Validate before touching storage
        pending = set()
        for mutation in mutations:
            if mutation.op == "create":
                if mutation.doc_id:
                    pending.add(f"{mutation.path.strip('/')}/{mutation.doc_id}")
            elif mutation.op == "update":
                if mutation.path.strip("/") not in pending and self._get(mutation.path) is None:
                    raise NotFoundError(f"Document not found: {mutation.path}", {"path": mutation.path})
            elif mutation.op != "delete":
                raise StoreError(f"Unknown mutation: {mutation.op}")

        snapshot = copy.deepcopy(self.db.storage.read())
        touched = set()
        created_ids = []
        now = self.timestamp()
        try:
            for mutation in mutations:
                if mutation.op == "create":
                    touched.add(mutation.path.strip("/"))
                    created_ids.append(
                        self._create(mutation.path, mutation.fields, mutation.doc_id, now)
                    )
                elif mutation.op == "update":
                    touched.add(split_path(mutation.path)[0])
                    self._update(mutation.path, mutation.fields, now)
                else:
                    touched.add(split_path(mutation.path)[0])
                    self._delete(mutation.path)
        except Exception as e:
            self._restore(snapshot, touched)
            logger.error(f"Batch of {len(mutations)} writes rolled back: {e}")
            raise StoreError(f"Batch commit failed: {e}") from e

        logger.debug(f"Committed batch of {len(mutations)} writes")
        return created_ids

    def _restore(self, snapshot: Optional[dict], touched: set):
        self.db.storage.write(snapshot or {})
        for name in touched:
            self.db.table(name).clear_cache()
