import json
import unittest
from datetime import timedelta

from stockroom import create_app
from stockroom.context import get_store_context
from stockroom.extensions import db
from stockroom.models import AuditLogEntry
from stockroom.services import audit_service
from stockroom.services.audit_service import (
    AuditAction,
    BulkDetails,
    RecordDetails,
)
from stockroom.time_utils import utcnow

from factories import TEST_CONFIG


class AuditServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app(dict(TEST_CONFIG))
        cls.app_ctx = cls.app.app_context()
        cls.app_ctx.push()
        cls.store = get_store_context(cls.app)

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.app_ctx.pop()

    def setUp(self):
        db.session.query(AuditLogEntry).delete()
        db.session.commit()
        self.store.identity_provider = None
        self.store.cache.clear()

    def _entry(self, action, *, days_ago=0, user_id='unknown'):
        db.session.add(AuditLogEntry(
            timestamp=utcnow() - timedelta(days=days_ago),
            action=action,
            details='{}',
            user_id=user_id,
            user_name='System',
        ))
        db.session.commit()

    def test_record_serializes_typed_details(self):
        entry_id = audit_service.record(
            self.store, AuditAction.BULK_ADD, BulkDetails(store='sales', total=10, succeeded=9, failed=1),
        )
        self.assertIsNotNone(entry_id)
        entry = audit_service.query(self.store, limit=1)[0]
        self.assertEqual(entry['id'], entry_id)
        self.assertEqual(json.loads(entry['details']), {'store': 'sales', 'total': 10, 'succeeded': 9, 'failed': 1})

    def test_record_accepts_action_value(self):
        self.assertIsNotNone(audit_service.record(self.store, 'delete', RecordDetails(store='products', id='1')))

    def test_mismatched_details_are_not_recorded(self):
        self.assertIsNone(audit_service.record(self.store, AuditAction.ADD, BulkDetails(store='x', total=1, succeeded=1)))
        self.assertEqual(audit_service.query(self.store), [])
        with self.assertRaises(TypeError):
            audit_service.serialize_details(AuditAction.ADD, {'store': 'x'})

    def test_record_never_raises_when_store_unavailable(self):
        self.store.available = False
        try:
            self.assertIsNone(audit_service.record(self.store, AuditAction.ADD, RecordDetails(store='products', id='1')))
        finally:
            self.store.available = True

    def test_identity_provider_failure_falls_back_to_system(self):
        def broken():
            raise RuntimeError('no session')

        self.store.identity_provider = broken
        audit_service.record(self.store, AuditAction.ADD, RecordDetails(store='products', id='1'))
        entry = audit_service.query(self.store, limit=1)[0]
        self.assertEqual((entry['userId'], entry['userName']), ('unknown', 'System'))

    def test_query_filters(self):
        self._entry('add', days_ago=10, user_id='1')
        self._entry('add', days_ago=1, user_id='2')
        self._entry('delete', days_ago=1, user_id='1')

        self.assertEqual(len(audit_service.query(self.store, action='add')), 2)
        self.assertEqual(len(audit_service.query(self.store, user_id='1')), 2)
        recent = audit_service.query(self.store, start_date=utcnow() - timedelta(days=2))
        self.assertEqual(len(recent), 2)
        old = audit_service.query(self.store, end_date=utcnow() - timedelta(days=5))
        self.assertEqual([e['userId'] for e in old], ['1'])
        self.assertEqual(len(audit_service.query(self.store, limit=1)), 1)

    def test_query_is_newest_first(self):
        self._entry('add', days_ago=3)
        self._entry('delete', days_ago=0)
        self.assertEqual([e['action'] for e in audit_service.query(self.store)], ['delete', 'add'])

    def test_prune_removes_only_expired_entries(self):
        self._entry('add', days_ago=91)
        self._entry('add', days_ago=89)
        self.assertEqual(audit_service.prune(self.store), 1)
        self.assertEqual(len(audit_service.query(self.store)), 1)
        self.assertEqual(audit_service.prune(self.store, retention_days=30), 1)


if __name__ == '__main__':
    unittest.main()
