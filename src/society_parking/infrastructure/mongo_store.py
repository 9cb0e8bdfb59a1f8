# File: src/society_parking/infrastructure/mongo_store.py
"""
MongoDB Document Store

pymongo implementation of the DocumentStore interface:
- Documents keep their id in ``_id``; callers only ever see ``id``
- Conditional updates are single ``update_one`` calls filtered on the
  expected fields, so they are atomic per document
- Transactions run in a client session (requires a replica set) and guard
  each write with the version read earlier in the same transaction;
  documents only read are checked against their latest version before commit
- Live subscriptions are driven by change streams on a listener thread
"""

from contextlib import contextmanager
from typing import Optional, List, Dict, Any, Set, Tuple, Iterator
import logging
import threading
from uuid import uuid4

import pymongo
from pymongo.errors import PyMongoError, DuplicateKeyError

from ..domain.exceptions import (
    DocumentStoreError, TransactionConflictError, DuplicateDocumentError
)
from .document_store import (
    DocumentStore, Transaction, Subscription, Document, Filters,
    SnapshotCallback, VERSION_FIELD, matches
)


TRANSIENT_TRANSACTION_ERROR = "TransientTransactionError"
UNKNOWN_COMMIT_RESULT = "UnknownTransactionCommitResult"


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Map pymongo exceptions onto the store's error kinds"""
    try:
        yield
    except DuplicateKeyError as e:
        raise DuplicateDocumentError(f"{operation}: {e}") from e
    except PyMongoError as e:
        if e.has_error_label(TRANSIENT_TRANSACTION_ERROR):
            raise TransactionConflictError(f"{operation}: {e}") from e
        raise DocumentStoreError(f"{operation}: {e}") from e


def to_mongo(document: Document) -> Document:
    data = dict(document)
    if "id" in data:
        data["_id"] = data.pop("id")
    return data


def from_mongo(document: Optional[Document]) -> Optional[Document]:
    if document is None:
        return None
    data = dict(document)
    data["id"] = data.pop("_id")
    return data


def to_mongo_filter(filters: Optional[Filters]) -> Filters:
    query = dict(filters or {})
    if "id" in query:
        query["_id"] = query.pop("id")
    return query


def _set_changes(changes: Document) -> Document:
    return {k: v for k, v in changes.items() if k not in ("id", "_id", VERSION_FIELD)}


class MongoTransaction(Transaction):
    """Multi-document transaction in a pymongo client session"""

    MAX_COMMIT_ATTEMPTS = 3

    def __init__(self, store: 'MongoDocumentStore'):
        self._store = store
        self._versions: Dict[Tuple[str, str], int] = {}
        self._written: Set[Tuple[str, str]] = set()
        self._closed = False
        self.logger = logging.getLogger(self.__class__.__name__)

        with translate_errors("start transaction"):
            self._session = store.client.start_session()
            self._session.start_transaction()

    def _remember(self, collection: str, document: Optional[Document]) -> Optional[Document]:
        if document is not None:
            self._versions.setdefault((collection, document["id"]), document[VERSION_FIELD])
        return document

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with translate_errors(f"get {collection}/{doc_id}"):
            raw = self._store.collection(collection).find_one({"_id": doc_id}, session=self._session)
        return self._remember(collection, from_mongo(raw))

    def find(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        with translate_errors(f"find {collection}"):
            cursor = self._store.collection(collection).find(
                to_mongo_filter(filters), session=self._session
            )
            documents = [from_mongo(raw) for raw in cursor]
        return [self._remember(collection, d) for d in documents]

    def insert(self, collection: str, document: Document) -> str:
        data = to_mongo(document)
        data.setdefault("_id", str(uuid4()))
        data[VERSION_FIELD] = 1
        with translate_errors(f"insert into {collection}"):
            self._store.collection(collection).insert_one(data, session=self._session)
        self._versions[(collection, data["_id"])] = 1
        self._written.add((collection, data["_id"]))
        return data["_id"]

    def update(self, collection: str, doc_id: str, changes: Document,
               expected: Optional[Filters] = None) -> bool:
        key = (collection, doc_id)
        current = self.get(collection, doc_id)
        if current is None:
            return False
        if expected and not matches(current, expected):
            return False

        version = self._versions[key]
        with translate_errors(f"update {collection}/{doc_id}"):
            result = self._store.collection(collection).update_one(
                {"_id": doc_id, VERSION_FIELD: version},
                {"$set": _set_changes(changes), "$inc": {VERSION_FIELD: 1}},
                session=self._session
            )
        if result.matched_count == 0:
            raise TransactionConflictError(f"{collection}/{doc_id} changed during transaction")

        self._versions[key] = version + 1
        self._written.add(key)
        return True

    def _check_reads(self) -> None:
        """
        Compare every document read but not written against its latest
        committed version. Written documents are already guarded by their
        ``update_one`` filter and by the server's write-conflict detection.
        """
        for (collection, doc_id), version in self._versions.items():
            if (collection, doc_id) in self._written:
                continue
            with translate_errors(f"check {collection}/{doc_id}"):
                latest = self._store.collection(collection).find_one(
                    {"_id": doc_id}, {VERSION_FIELD: 1}
                )
            if latest is None or latest.get(VERSION_FIELD) != version:
                raise TransactionConflictError(f"{collection}/{doc_id} changed since it was read")

    def commit(self) -> None:
        if self._closed:
            raise DocumentStoreError("Transaction already closed")
        try:
            self._check_reads()
        except DocumentStoreError:
            self.rollback()
            raise
        try:
            for attempt in range(1, self.MAX_COMMIT_ATTEMPTS + 1):
                try:
                    with translate_errors("commit"):
                        self._session.commit_transaction()
                    return
                except DocumentStoreError as e:
                    cause = e.__cause__
                    retryable = isinstance(cause, PyMongoError) and cause.has_error_label(UNKNOWN_COMMIT_RESULT)
                    if not retryable or attempt == self.MAX_COMMIT_ATTEMPTS:
                        raise
                    self.logger.warning(f"Commit result unknown, retrying (attempt {attempt})")
        finally:
            self._close()

    def rollback(self) -> None:
        if self._closed:
            return
        try:
            if self._session.in_transaction:
                self._session.abort_transaction()
        except PyMongoError as e:
            self.logger.error(f"Error aborting transaction: {e}")
        finally:
            self._close()

    def _close(self) -> None:
        self._closed = True
        self._session.end_session()


class MongoDocumentStore(DocumentStore):
    """Document store backed by MongoDB"""

    def __init__(
        self,
        mongo_url: str = "mongodb://localhost:27017",
        database: str = "society_parking",
        client: Optional[pymongo.MongoClient] = None,
        poll_interval_seconds: float = 0.5,
        **kwargs
    ):
        self.mongo_url = mongo_url
        self.logger = logging.getLogger(self.__class__.__name__)
        self.client = client if client is not None else pymongo.MongoClient(mongo_url, **kwargs)
        self.db = self.client[database]
        self.poll_interval_seconds = poll_interval_seconds
        self._listeners: Dict[str, Tuple[threading.Event, threading.Thread]] = {}
        self._listeners_lock = threading.Lock()

    def collection(self, name: str):
        return self.db[name]

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with translate_errors(f"get {collection}/{doc_id}"):
            return from_mongo(self.collection(collection).find_one({"_id": doc_id}))

    def find(self, collection: str, filters: Optional[Filters] = None) -> List[Document]:
        with translate_errors(f"find {collection}"):
            return [from_mongo(raw) for raw in self.collection(collection).find(to_mongo_filter(filters))]

    def count(self, collection: str, filters: Optional[Filters] = None) -> int:
        with translate_errors(f"count {collection}"):
            return self.collection(collection).count_documents(to_mongo_filter(filters))

    def insert(self, collection: str, document: Document) -> str:
        data = to_mongo(document)
        data.setdefault("_id", str(uuid4()))
        data[VERSION_FIELD] = 1
        with translate_errors(f"insert into {collection}"):
            self.collection(collection).insert_one(data)
        self.logger.debug(f"Inserted {collection}/{data['_id']}")
        return data["_id"]

    def update(self, collection: str, doc_id: str, changes: Document,
               expected: Optional[Filters] = None) -> bool:
        query = {"_id": doc_id, **to_mongo_filter(expected)}
        with translate_errors(f"update {collection}/{doc_id}"):
            result = self.collection(collection).update_one(
                query, {"$set": _set_changes(changes), "$inc": {VERSION_FIELD: 1}}
            )
        return result.matched_count == 1

    def delete(self, collection: str, doc_id: str) -> bool:
        with translate_errors(f"delete {collection}/{doc_id}"):
            return self.collection(collection).delete_one({"_id": doc_id}).deleted_count == 1

    def create_index(self, collection: str, field: str, unique: bool = False) -> None:
        with translate_errors(f"create index {collection}.{field}"):
            self.collection(collection).create_index([(field, pymongo.ASCENDING)], unique=unique)

    def begin(self) -> MongoTransaction:
        return MongoTransaction(self)

    # -- subscriptions -------------------------------------------------------

    def subscribe(self, collection: str, filters: Optional[Filters],
                  callback: SnapshotCallback) -> Subscription:
        subscription_id = str(uuid4())
        stop = threading.Event()
        thread = threading.Thread(
            target=self._watch,
            args=(subscription_id, collection, filters, callback, stop),
            name=f"watch-{collection}-{subscription_id[:8]}",
            daemon=True
        )
        with self._listeners_lock:
            self._listeners[subscription_id] = (stop, thread)

        self._deliver(subscription_id, collection, filters, callback)
        thread.start()
        return Subscription(subscription_id, self._unsubscribe)

    def _watch(self, subscription_id: str, collection: str, filters: Optional[Filters],
               callback: SnapshotCallback, stop: threading.Event) -> None:
        try:
            with self.collection(collection).watch() as stream:
                while not stop.is_set():
                    change = stream.try_next()
                    if change is None:
                        stop.wait(self.poll_interval_seconds)
                        continue
                    self._deliver(subscription_id, collection, filters, callback)
        except PyMongoError as e:
            self.logger.error(f"Change stream for subscription {subscription_id} stopped: {e}")

    def _deliver(self, subscription_id: str, collection: str, filters: Optional[Filters],
                 callback: SnapshotCallback) -> None:
        try:
            snapshot = self.find(collection, filters)
            callback(snapshot)
        except Exception as e:
            self.logger.error(f"Error in subscription {subscription_id} callback: {e}")

    def _unsubscribe(self, subscription_id: str) -> None:
        with self._listeners_lock:
            listener = self._listeners.pop(subscription_id, None)
        if listener:
            listener[0].set()

    def close(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.values())
            self._listeners.clear()
        for stop, _ in listeners:
            stop.set()
        self.client.close()
        self.logger.info("Mongo document store closed")
