import pytest

from stockroom.errors import NotFoundError, TransactionAbortError, ValidationError
from stockroom.models import BACKUPS, PRODUCTS, SALES
from stockroom.services import audit_service, backup_service, store_service

from factories import make_product, make_sale


def test_create_backup_snapshots_current_data(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    timestamp = backup_service.create_backup(ctx, 'manual')

    backup = backup_service.get_backup(ctx, timestamp)
    assert backup['type'] == 'manual'
    assert [p['id'] for p in backup['data']['products']] == ['1']
    assert backup['schemaVersion'] == 3
    assert backup['info']['counts'][PRODUCTS] == 1


def test_backup_timestamps_are_strictly_increasing(ctx):
    stamps = [backup_service.create_backup(ctx) for _ in range(5)]
    assert None not in stamps
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 5


def test_unknown_backup_type_is_refused(ctx):
    assert backup_service.create_backup(ctx, 'weekly') is None
    assert store_service.count(ctx, BACKUPS) == 0


def test_retention_keeps_newest_max_backups(ctx):
    stamps = [backup_service.create_backup(ctx) for _ in range(ctx.policy.max_backups + 5)]

    kept = [b['timestamp'] for b in backup_service.list_backups(ctx)]
    assert len(kept) == ctx.policy.max_backups
    assert kept == sorted(stamps[5:], reverse=True)
    assert backup_service.get_last_backup_date(ctx) == stamps[-1]


def test_cleanup_with_explicit_limit(ctx):
    for _ in range(4):
        backup_service.create_backup(ctx)
    assert backup_service.cleanup_old_backups(ctx, max_backups=1) == 3
    assert store_service.count(ctx, BACKUPS) == 1


def test_list_backups_filters_by_type(ctx):
    backup_service.create_backup(ctx, 'manual')
    backup_service.create_backup(ctx, 'quick_sync')
    assert [b['type'] for b in backup_service.list_backups(ctx, 'quick_sync')] == ['quick_sync']


def test_restore_replaces_data_and_keeps_safety_snapshot(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    store_service.add(ctx, SALES, make_sale(1))
    snapshot = backup_service.create_backup(ctx, 'manual')

    store_service.add(ctx, PRODUCTS, make_product(2))
    store_service.delete(ctx, SALES, '1')

    assert backup_service.restore_backup(ctx, snapshot) is True

    data = store_service.get_system_data(ctx)
    assert [p['id'] for p in data['products']] == ['1']
    assert [s['id'] for s in data['sales']] == ['1']

    safety = backup_service.list_backups(ctx, 'pre_restore')
    assert len(safety) == 1
    assert sorted(p['id'] for p in safety[0]['data']['products']) == ['1', '2']

    restored = audit_service.query(ctx, action='restore_backup')
    assert len(restored) == 1
    assert snapshot in restored[0]['details']


def test_restore_unknown_backup_raises(ctx):
    with pytest.raises(NotFoundError):
        backup_service.restore_backup(ctx, '1999-01-01T00:00:00.000000Z')


def test_archive_backup_cannot_be_restored(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    store_service.add(ctx, SALES, make_sale(1))
    archive = backup_service.create_backup(
        ctx, 'archive', {'products': [], 'sales': [make_sale(9)], 'settings': {}},
    )

    with pytest.raises(ValidationError):
        backup_service.restore_backup(ctx, archive)
    assert store_service.count(ctx, PRODUCTS) == 1
    assert backup_service.list_backups(ctx, 'pre_restore') == []


def test_restore_aborts_without_safety_snapshot(ctx, monkeypatch):
    store_service.add(ctx, PRODUCTS, make_product(1))
    snapshot = backup_service.create_backup(ctx)
    store_service.add(ctx, PRODUCTS, make_product(2))

    real_create = backup_service.create_backup

    def failing_pre_restore(c, backup_type='manual', data=None):
        if backup_type == 'pre_restore':
            return None
        return real_create(c, backup_type, data)

    monkeypatch.setattr(backup_service, 'create_backup', failing_pre_restore)

    with pytest.raises(TransactionAbortError):
        backup_service.restore_backup(ctx, snapshot)
    assert store_service.count(ctx, PRODUCTS) == 2
