#!/usr/bin/env python3
"""
Mongo Document Store Unit Tests

The pymongo client is replaced by MagicMock objects; these tests check the
queries and updates the adapter issues and how it maps pymongo errors.
"""

import unittest
from unittest.mock import MagicMock, Mock

from pymongo.errors import DuplicateKeyError, PyMongoError

from society_parking.domain.exceptions import (
    DocumentStoreError, DuplicateDocumentError, TransactionConflictError
)
from society_parking.infrastructure.mongo_store import (
    MongoDocumentStore, from_mongo, to_mongo, to_mongo_filter, translate_errors
)


class TestConversions(unittest.TestCase):
    """Tests for id <-> _id conversion helpers"""

    def test_round_trip_id(self):
        self.assertEqual(to_mongo({"id": "s1", "a": 1}), {"_id": "s1", "a": 1})
        self.assertEqual(from_mongo({"_id": "s1", "a": 1}), {"id": "s1", "a": 1})
        self.assertIsNone(from_mongo(None))

    def test_filter_translation(self):
        self.assertEqual(to_mongo_filter({"id": "s1", "status": "active"}), {"_id": "s1", "status": "active"})
        self.assertEqual(to_mongo_filter(None), {})


class TestErrorTranslation(unittest.TestCase):
    """Tests for translate_errors"""

    def test_duplicate_key(self):
        with self.assertRaises(DuplicateDocumentError):
            with translate_errors("insert"):
                raise DuplicateKeyError("E11000 duplicate key error")

    def test_transient_transaction_error(self):
        with self.assertRaises(TransactionConflictError):
            with translate_errors("update"):
                raise PyMongoError("WriteConflict", error_labels=["TransientTransactionError"])

    def test_other_errors(self):
        with self.assertRaises(DocumentStoreError) as ctx:
            with translate_errors("find"):
                raise PyMongoError("connection refused")
        self.assertNotIsInstance(ctx.exception, TransactionConflictError)
        self.assertIn("find", str(ctx.exception))


class MongoStoreTestBase(unittest.TestCase):
    """Store wired to a mocked client"""

    def setUp(self):
        self.client = MagicMock()
        self.collection = self.client.__getitem__.return_value.__getitem__.return_value
        self.store = MongoDocumentStore(client=self.client, database="test_parking")


class TestMongoDocumentStore(MongoStoreTestBase):
    """Tests for plain store operations"""

    def test_get_maps_id(self):
        self.collection.find_one.return_value = {"_id": "s1", "status": "available", "version": 1}

        document = self.store.get("parkingSlots", "s1")

        self.assertEqual(document, {"id": "s1", "status": "available", "version": 1})
        self.collection.find_one.assert_called_once_with({"_id": "s1"})
        self.client.__getitem__.assert_called_with("test_parking")

    def test_find_translates_filters(self):
        self.collection.find.return_value = [{"_id": "b1", "requester": "alice"}]

        documents = self.store.find("parkingBookings", {"requester": "alice"})

        self.assertEqual(documents, [{"id": "b1", "requester": "alice"}])
        self.collection.find.assert_called_once_with({"requester": "alice"})

    def test_count(self):
        self.collection.count_documents.return_value = 3
        self.assertEqual(self.store.count("parkingSlots", {"id": "s1"}), 3)
        self.collection.count_documents.assert_called_once_with({"_id": "s1"})

    def test_insert_sets_version(self):
        doc_id = self.store.insert("parkingSlots", {"id": "s1", "slot_number": "V-01"})

        self.assertEqual(doc_id, "s1")
        self.collection.insert_one.assert_called_once_with(
            {"_id": "s1", "slot_number": "V-01", "version": 1}
        )

    def test_insert_duplicate(self):
        self.collection.insert_one.side_effect = DuplicateKeyError("E11000")
        with self.assertRaises(DuplicateDocumentError):
            self.store.insert("parkingSlots", {"id": "s1"})

    def test_conditional_update(self):
        self.collection.update_one.return_value = Mock(matched_count=1)

        updated = self.store.update(
            "parkingSlots", "s1", {"id": "s1", "status": "reserved", "version": 9}, {"status": "available"}
        )

        self.assertTrue(updated)
        self.collection.update_one.assert_called_once_with(
            {"_id": "s1", "status": "available"},
            {"$set": {"status": "reserved"}, "$inc": {"version": 1}}
        )

    def test_conditional_update_not_matched(self):
        self.collection.update_one.return_value = Mock(matched_count=0)
        self.assertFalse(self.store.update("parkingSlots", "s1", {"status": "reserved"}, {"status": "available"}))

    def test_delete(self):
        self.collection.delete_one.return_value = Mock(deleted_count=1)
        self.assertTrue(self.store.delete("parkingSlots", "s1"))

    def test_create_unique_index(self):
        self.store.create_index("parkingSlots", "slot_number", unique=True)
        self.collection.create_index.assert_called_once_with([("slot_number", 1)], unique=True)

    def test_close(self):
        self.store.close()
        self.client.close.assert_called_once()


class TestMongoTransaction(MongoStoreTestBase):
    """Tests for session-based transactions"""

    def setUp(self):
        super().setUp()
        self.session = self.client.start_session.return_value
        self.session.in_transaction = True

    def test_begin_starts_transaction(self):
        self.store.begin()
        self.client.start_session.assert_called_once()
        self.session.start_transaction.assert_called_once()

    def test_update_is_guarded_by_read_version(self):
        self.collection.find_one.return_value = {"_id": "s1", "status": "available", "version": 3}
        self.collection.update_one.return_value = Mock(matched_count=1)

        tx = self.store.begin()
        self.assertTrue(tx.update("parkingSlots", "s1", {"status": "reserved"}, {"status": "available"}))

        self.collection.find_one.assert_called_with({"_id": "s1"}, session=self.session)
        self.collection.update_one.assert_called_once_with(
            {"_id": "s1", "version": 3},
            {"$set": {"status": "reserved"}, "$inc": {"version": 1}},
            session=self.session
        )

    def test_update_expected_mismatch(self):
        self.collection.find_one.return_value = {"_id": "s1", "status": "reserved", "version": 3}

        tx = self.store.begin()
        self.assertFalse(tx.update("parkingSlots", "s1", {"status": "reserved"}, {"status": "available"}))
        self.collection.update_one.assert_not_called()

    def test_update_of_changed_document_conflicts(self):
        self.collection.find_one.return_value = {"_id": "s1", "status": "available", "version": 3}
        self.collection.update_one.return_value = Mock(matched_count=0)

        tx = self.store.begin()
        with self.assertRaises(TransactionConflictError):
            tx.update("parkingSlots", "s1", {"status": "reserved"})

    def test_insert_uses_session(self):
        tx = self.store.begin()
        tx.insert("parkingBookings", {"id": "b1"})
        self.collection.insert_one.assert_called_once_with(
            {"_id": "b1", "version": 1}, session=self.session
        )

    def test_commit_ends_session(self):
        with self.store.begin():
            pass
        self.session.commit_transaction.assert_called_once()
        self.session.end_session.assert_called_once()

    def test_commit_retries_unknown_result(self):
        self.session.commit_transaction.side_effect = [
            PyMongoError("timeout", error_labels=["UnknownTransactionCommitResult"]),
            None,
        ]
        self.store.begin().commit()
        self.assertEqual(self.session.commit_transaction.call_count, 2)

    def test_commit_conflict(self):
        self.session.commit_transaction.side_effect = PyMongoError(
            "WriteConflict", error_labels=["TransientTransactionError"]
        )
        with self.assertRaises(TransactionConflictError):
            self.store.begin().commit()
        self.session.end_session.assert_called_once()

    def test_document_read_then_changed_elsewhere_conflicts(self):
        self.collection.find_one.side_effect = [
            {"_id": "s1", "status": "available", "version": 3},
            {"_id": "s1", "version": 4},
        ]

        tx = self.store.begin()
        self.assertEqual(tx.get("parkingSlots", "s1")["version"], 3)
        with self.assertRaises(TransactionConflictError):
            tx.commit()

        self.collection.find_one.assert_called_with({"_id": "s1"}, {"version": 1})
        self.session.commit_transaction.assert_not_called()
        self.session.abort_transaction.assert_called_once()
        self.session.end_session.assert_called_once()

    def test_unchanged_reads_commit_and_written_documents_are_not_rechecked(self):
        self.collection.find_one.side_effect = [
            {"_id": "s1", "status": "available", "version": 3},
            {"_id": "s2", "status": "available", "version": 7},
            {"_id": "s2", "version": 7},
        ]
        self.collection.update_one.return_value = Mock(matched_count=1)

        with self.store.begin() as tx:
            tx.update("parkingSlots", "s1", {"status": "reserved"})
            tx.get("parkingSlots", "s2")

        self.assertEqual(self.collection.find_one.call_count, 3)
        self.collection.find_one.assert_called_with({"_id": "s2"}, {"version": 1})
        self.session.commit_transaction.assert_called_once()

    def test_rollback_aborts(self):
        with self.assertRaises(RuntimeError):
            with self.store.begin():
                raise RuntimeError("boom")
        self.session.abort_transaction.assert_called_once()
        self.session.end_session.assert_called_once()
        self.session.commit_transaction.assert_not_called()


class TestMongoSubscriptions(MongoStoreTestBase):
    """Tests for change-stream subscriptions"""

    def test_initial_snapshot_and_unsubscribe(self):
        self.store.poll_interval_seconds = 0.01
        stream = self.collection.watch.return_value.__enter__.return_value
        stream.try_next.return_value = None
        self.collection.find.return_value = [{"_id": "s1", "status": "available"}]
        snapshots = []

        subscription = self.store.subscribe("parkingSlots", None, snapshots.append)
        subscription.unsubscribe()

        self.assertEqual(snapshots[0], [{"id": "s1", "status": "available"}])
        self.assertFalse(subscription.active)
        self.store.close()


if __name__ == '__main__':
    unittest.main()
