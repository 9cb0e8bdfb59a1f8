# File: src/society_parking/infrastructure/document_store.py
"""
Document Store Abstraction

The parking core talks to its backing database through this narrow
interface: point reads, filtered queries, atomic create, atomic conditional
update, delete, a live-subscription feed and optimistic transactions.

Every stored document carries an integer ``version`` maintained by the
store. Transactions remember the version of each document they read and
refuse to commit if any of them changed in the meantime, which is what lets
"read slot, verify available, write reserved + create booking" run as one
all-or-nothing unit across independent client processes.

Implementations:
- InMemoryDocumentStore - For testing and single-process deployments
- MongoDocumentStore - pymongo backed (see mongo_store.py)
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Optional, List, Dict, Any, Callable, Tuple, Set
import copy
import logging
import threading
from uuid import uuid4

from ..domain.exceptions import (
    DocumentStoreError, TransactionConflictError, DuplicateDocumentError
)

VERSION_FIELD = "version"

Document = Dict[str, Any]
Filters = Dict[str, Any]
SnapshotCallback = Callable[[List[Document]], None]


# ============================================================================
# FILTER MATCHING
# ============================================================================

def _lookup(document: Document, path: str) -> Any:
    """Resolve a dotted field path, None when any part is missing"""
    value: Any = document
    for part in path.split('.'):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "$eq":
        return actual == expected
    if op == "$ne":
        return actual != expected
    if op == "$in":
        return actual in expected
    if actual is None:
        return False
    if op == "$lt":
        return actual < expected
    if op == "$lte":
        return actual <= expected
    if op == "$gt":
        return actual > expected
    if op == "$gte":
        return actual >= expected
    raise DocumentStoreError(f"Unsupported filter operator: {op}")


def matches(document: Document, filters: Optional[Filters]) -> bool:
    """
    Evaluate a Mongo-style filter against a document
    Supports equality and the $eq, $ne, $in, $lt, $lte, $gt, $gte operators
    """
    for field, condition in (filters or {}).items():
        actual = _lookup(document, field)
        if isinstance(condition, dict) and condition and all(k.startswith('$') for k in condition):
            for op, expected in condition.items():
                if not _compare(op, actual, expected):
                    return False
        elif actual != condition:
            return False
    return True


# ============================================================================
# INTERFACES
# ============================================================================

class DocumentSource(ABC):
    """Read/write operations shared by a store and a transaction on it"""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Point read, None when the document does not exist"""
        pass

    @abstractmethod
    def find(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        """Filtered query (equality/range on fields)"""
        pass

    @abstractmethod
    def insert(self, collection: str, document: Document) -> str:
        """Atomic create, returns the document id"""
        pass

    @abstractmethod
    def update(self, collection: str, doc_id: str, changes: Document,
               expected: Optional[Filters] = None) -> bool:
        """
        Apply changes to a document
        When ``expected`` is given the update only happens if the current
        document matches it. Returns False when nothing was updated.
        """
        pass


class Subscription:
    """Handle returned by DocumentStore.subscribe"""

    def __init__(self, subscription_id: str, cancel: Callable[[str], None]):
        self.subscription_id = subscription_id
        self._cancel = cancel
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._cancel(self.subscription_id)


class Transaction(DocumentSource, ABC):
    """
    Optimistic multi-document transaction

    Used as a context manager: commits on clean exit, rolls back when the
    block raises.
    """

    @abstractmethod
    def commit(self) -> None:
        """Apply all writes or raise TransactionConflictError"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        pass

    def __enter__(self) -> 'Transaction':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()


class DocumentStore(DocumentSource, ABC):
    """Collection-oriented document database"""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        pass

    @abstractmethod
    def count(self, collection: str, filters: Optional[Filters] = None) -> int:
        pass

    @abstractmethod
    def create_index(self, collection: str, field: str, unique: bool = False) -> None:
        pass

    @abstractmethod
    def subscribe(self, collection: str, filters: Optional[Filters],
                  callback: SnapshotCallback) -> Subscription:
        """
        Live query: callback receives the full matching document set now
        and again after every change to the collection
        """
        pass

    @abstractmethod
    def begin(self) -> Transaction:
        pass

    def close(self) -> None:
        pass


# ============================================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================================

class InMemoryTransaction(Transaction):
    """Transaction buffering writes until commit"""

    def __init__(self, store: 'InMemoryDocumentStore'):
        self._store = store
        self._reads: Dict[Tuple[str, str], Optional[int]] = {}
        self._updates: Dict[Tuple[str, str], Document] = {}
        self._inserts: Dict[Tuple[str, str], Document] = {}
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise DocumentStoreError("Transaction already closed")

    def _pending(self, key: Tuple[str, str]) -> Optional[Document]:
        if key in self._inserts:
            return self._inserts[key]
        return self._updates.get(key)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        self._ensure_open()
        key = (collection, doc_id)
        pending = self._pending(key)
        if pending is not None:
            return copy.deepcopy(pending)

        document = self._store.get(collection, doc_id)
        if key not in self._reads:
            self._reads[key] = document[VERSION_FIELD] if document else None
        return document

    def find(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        self._ensure_open()
        results: Dict[str, Document] = {}
        for document in self._store.find(collection, filters):
            key = (collection, document["id"])
            self._reads.setdefault(key, document[VERSION_FIELD])
            results[document["id"]] = document

        # Overlay this transaction's own writes
        for (coll, doc_id), pending in list(self._updates.items()) + list(self._inserts.items()):
            if coll != collection:
                continue
            if matches(pending, filters):
                results[doc_id] = copy.deepcopy(pending)
            else:
                results.pop(doc_id, None)

        return list(results.values())

    def insert(self, collection: str, document: Document) -> str:
        self._ensure_open()
        document = copy.deepcopy(document)
        doc_id = document.get("id") or str(uuid4())
        document["id"] = doc_id
        key = (collection, doc_id)
        if key in self._inserts or self._store.get(collection, doc_id) is not None:
            raise DuplicateDocumentError(f"Document {doc_id} already exists in {collection}")

        document[VERSION_FIELD] = 1
        self._inserts[key] = document
        return doc_id

    def update(self, collection: str, doc_id: str, changes: Document,
               expected: Optional[Filters] = None) -> bool:
        self._ensure_open()
        current = self.get(collection, doc_id)
        if current is None:
            return False
        if expected and not matches(current, expected):
            return False

        key = (collection, doc_id)
        updated = {**current, **copy.deepcopy(changes), "id": doc_id}
        if key in self._inserts:
            self._inserts[key] = updated
        else:
            self._updates[key] = updated
        return True

    def commit(self) -> None:
        self._ensure_open()
        try:
            self._store._apply_transaction(self._reads, self._updates, self._inserts)
        finally:
            self._closed = True

    def rollback(self) -> None:
        if not self._closed:
            self._updates.clear()
            self._inserts.clear()
            self._closed = True


class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe in-memory document store

    Documents are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = defaultdict(dict)
        self._unique_fields: Dict[str, Set[str]] = defaultdict(set)
        self._subscriptions: Dict[str, Tuple[str, Optional[Filters], SnapshotCallback, threading.RLock]] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger(self.__class__.__name__)

    # -- reads -------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            document = self._collections[collection].get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def find(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        with self._lock:
            return [
                copy.deepcopy(document)
                for document in self._collections[collection].values()
                if matches(document, filters)
            ]

    def count(self, collection: str, filters: Optional[Filters] = None) -> int:
        with self._lock:
            return sum(1 for d in self._collections[collection].values() if matches(d, filters))

    # -- writes ------------------------------------------------------------

    def _check_unique(self, collection: str, document: Document,
                      pending: Optional[List[Document]] = None) -> None:
        for field in self._unique_fields[collection]:
            value = document.get(field)
            if value is None:
                continue
            others = list(self._collections[collection].values()) + (pending or [])
            for other in others:
                if other["id"] != document["id"] and other.get(field) == value:
                    raise DuplicateDocumentError(
                        f"Duplicate value {value!r} for unique field {collection}.{field}"
                    )

    def insert(self, collection: str, document: Document) -> str:
        document = copy.deepcopy(document)
        doc_id = document.get("id") or str(uuid4())
        document["id"] = doc_id
        document[VERSION_FIELD] = 1

        with self._lock:
            if doc_id in self._collections[collection]:
                raise DuplicateDocumentError(f"Document {doc_id} already exists in {collection}")
            self._check_unique(collection, document)
            self._collections[collection][doc_id] = document

        self.logger.debug(f"Inserted {collection}/{doc_id}")
        self._notify({collection})
        return doc_id

    def update(self, collection: str, doc_id: str, changes: Document,
               expected: Optional[Filters] = None) -> bool:
        with self._lock:
            current = self._collections[collection].get(doc_id)
            if current is None:
                return False
            if expected and not matches(current, expected):
                return False

            updated = {**current, **copy.deepcopy(changes), "id": doc_id}
            updated[VERSION_FIELD] = current[VERSION_FIELD] + 1
            self._check_unique(collection, updated)
            self._collections[collection][doc_id] = updated

        self.logger.debug(f"Updated {collection}/{doc_id}")
        self._notify({collection})
        return True

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            removed = self._collections[collection].pop(doc_id, None)

        if removed is None:
            return False
        self.logger.debug(f"Deleted {collection}/{doc_id}")
        self._notify({collection})
        return True

    def create_index(self, collection: str, field: str, unique: bool = False) -> None:
        if unique:
            with self._lock:
                self._unique_fields[collection].add(field)

    # -- transactions --------------------------------------------------------

    def begin(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    def _apply_transaction(
        self,
        reads: Dict[Tuple[str, str], Optional[int]],
        updates: Dict[Tuple[str, str], Document],
        inserts: Dict[Tuple[str, str], Document]
    ) -> None:
        with self._lock:
            for (collection, doc_id), version in reads.items():
                current = self._collections[collection].get(doc_id)
                current_version = current[VERSION_FIELD] if current else None
                if current_version != version:
                    raise TransactionConflictError(
                        f"{collection}/{doc_id} changed during transaction "
                        f"(read version {version}, now {current_version})"
                    )

            pending_by_collection: Dict[str, List[Document]] = defaultdict(list)
            for (collection, _), document in inserts.items():
                pending_by_collection[collection].append(document)

            for (collection, doc_id), document in inserts.items():
                if doc_id in self._collections[collection]:
                    raise TransactionConflictError(f"{collection}/{doc_id} was created concurrently")
                others = [d for d in pending_by_collection[collection] if d["id"] != doc_id]
                self._check_unique(collection, document, others)

            for (collection, doc_id), document in updates.items():
                self._check_unique(collection, document)

            # Validation passed, apply everything
            for (collection, doc_id), document in updates.items():
                document = copy.deepcopy(document)
                document[VERSION_FIELD] = reads[(collection, doc_id)] + 1
                self._collections[collection][doc_id] = document

            for (collection, doc_id), document in inserts.items():
                self._collections[collection][doc_id] = copy.deepcopy(document)

        changed = {c for c, _ in updates} | {c for c, _ in inserts}
        if changed:
            self.logger.debug(f"Committed transaction touching {sorted(changed)}")
            self._notify(changed)

    # -- subscriptions -------------------------------------------------------

    def subscribe(self, collection: str, filters: Optional[Filters],
                  callback: SnapshotCallback) -> Subscription:
        subscription_id = str(uuid4())
        with self._lock:
            self._subscriptions[subscription_id] = (collection, filters, callback, threading.RLock())

        self._deliver(subscription_id)
        return Subscription(subscription_id, self._unsubscribe)

    def _unsubscribe(self, subscription_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    def _notify(self, collections: Set[str]) -> None:
        with self._lock:
            targets = [
                sid for sid, (coll, _, _, _) in self._subscriptions.items() if coll in collections
            ]
        for sid in targets:
            self._deliver(sid)

    def _deliver(self, subscription_id: str) -> None:
        """
        Push the current matching set to one subscriber

        Snapshot and callback run under the subscription's own lock, so
        deliveries to a subscriber are serialized and each one reads the
        store after any delivery before it. The last snapshot delivered is
        therefore never older than the last commit.
        """
        with self._lock:
            entry = self._subscriptions.get(subscription_id)
        if entry is None:
            return
        collection, filters, callback, delivery_lock = entry

        with delivery_lock:
            if subscription_id not in self._subscriptions:
                return
            snapshot = self.find(collection, filters)
            try:
                callback(snapshot)
            except Exception as e:
                self.logger.error(f"Error in subscription {subscription_id} callback: {e}")

