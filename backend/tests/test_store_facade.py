import pytest

from stockroom.errors import (
    ConflictError,
    NotFoundError,
    PartialBulkFailure,
    ValidationError,
)
from stockroom.models import AUDIT_LOG, DEFAULT_SETTINGS, PRODUCTS, SALES, SETTINGS
from stockroom.services import audit_service, store_service
from stockroom.services.collection_store import KeyRange
from stockroom.services.flat_storage import LAST_SAVE_KEY

from factories import make_product, make_sale


def test_add_then_get_returns_record(ctx):
    key = store_service.add(ctx, PRODUCTS, make_product(1, name='Coffee'))
    assert key == '1'
    assert store_service.get(ctx, PRODUCTS, '1')['name'] == 'Coffee'
    assert store_service.get(ctx, PRODUCTS, 1)['name'] == 'Coffee'


def test_add_duplicate_key_conflicts(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    with pytest.raises(ConflictError):
        store_service.add(ctx, PRODUCTS, make_product(1, name='Other'))
    assert store_service.count(ctx, PRODUCTS) == 1


def test_add_without_key_is_rejected(ctx):
    record = make_product(1)
    del record['id']
    with pytest.raises(ValidationError):
        store_service.add(ctx, PRODUCTS, record)


def test_unknown_collection_is_rejected(ctx):
    with pytest.raises(ValidationError):
        store_service.get_all(ctx, 'customers')


def test_update_is_visible_to_cached_reads(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock=5))
    assert store_service.get_all(ctx, PRODUCTS)[0]['stock'] == 5
    assert store_service.get(ctx, PRODUCTS, '1')['stock'] == 5

    store_service.update(ctx, PRODUCTS, make_product(1, stock=7))

    assert store_service.get_all(ctx, PRODUCTS)[0]['stock'] == 7
    assert store_service.get(ctx, PRODUCTS, '1')['stock'] == 7


def test_update_upserts_missing_record(ctx):
    store_service.update(ctx, PRODUCTS, make_product(9))
    assert store_service.get(ctx, PRODUCTS, '9') is not None


def test_reads_return_independent_copies(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock=5))
    first = store_service.get(ctx, PRODUCTS, '1')
    first['stock'] = -100
    assert store_service.get(ctx, PRODUCTS, '1')['stock'] == 5


def test_delete_reports_whether_anything_matched(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    assert store_service.delete(ctx, PRODUCTS, '1') is True
    assert store_service.delete(ctx, PRODUCTS, '1') is False
    assert store_service.get(ctx, PRODUCTS, '1') is None


def test_delete_many_removes_in_one_step(ctx):
    for i in range(5):
        store_service.add(ctx, PRODUCTS, make_product(i))
    assert store_service.delete_many(ctx, PRODUCTS, ['0', '1', '404']) == 2
    assert store_service.count(ctx, PRODUCTS) == 3


def test_bulk_add_inserts_everything(ctx):
    inserted = store_service.bulk_add(ctx, PRODUCTS, [make_product(i) for i in range(10)])
    assert inserted == 10
    assert store_service.count(ctx, PRODUCTS) == 10


def test_bulk_add_reports_partial_failure_and_keeps_the_rest(ctx):
    store_service.add(ctx, PRODUCTS, make_product(3))
    # Prime the cache so the invalidation is observable.
    assert len(store_service.get_all(ctx, PRODUCTS)) == 1

    batch = [make_product(i) for i in range(10, 13)] + [make_product(3)] + [make_product(i) for i in range(13, 19)]
    assert len(batch) == 10

    with pytest.raises(PartialBulkFailure) as excinfo:
        store_service.bulk_add(ctx, PRODUCTS, batch)

    assert excinfo.value.inserted == 9
    assert excinfo.value.failed == 1
    assert excinfo.value.total == 10
    assert excinfo.value.failures[0]['item'] == '3'
    assert str(excinfo.value) == '1 of 10 items failed in products'
    assert len(store_service.get_all(ctx, PRODUCTS)) == 10


def test_bulk_add_rejects_key_repeated_inside_batch(ctx):
    with pytest.raises(PartialBulkFailure) as excinfo:
        store_service.bulk_add(ctx, PRODUCTS, [make_product(1), make_product(1)])
    assert excinfo.value.inserted == 1
    assert store_service.count(ctx, PRODUCTS) == 1


def test_index_range_query(ctx):
    store_service.add(ctx, SALES, make_sale(1, date='2026-01-05T00:00:00.000Z'))
    store_service.add(ctx, SALES, make_sale(2, date='2026-02-05T00:00:00.000Z'))
    store_service.add(ctx, SALES, make_sale(3, date='2026-03-05T00:00:00.000Z'))

    found = store_service.get_all(
        ctx, SALES, index='date',
        key_range=KeyRange(lower='2026-02-01T00:00:00.000Z', upper='2026-03-31T00:00:00.000Z'),
    )
    assert [s['id'] for s in found] == ['2', '3']

    open_upper = store_service.get_all(
        ctx, SALES, index='date',
        key_range=KeyRange(upper='2026-02-05T00:00:00.000Z', upper_open=True),
    )
    assert [s['id'] for s in open_upper] == ['1']


def test_index_query_orders_by_index(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock=30))
    store_service.add(ctx, PRODUCTS, make_product(2, stock=3))
    store_service.add(ctx, PRODUCTS, make_product(3, stock=12))
    ordered = store_service.get_all(ctx, PRODUCTS, index='stock')
    assert [p['id'] for p in ordered] == ['2', '3', '1']


def test_unknown_index_is_rejected(ctx):
    with pytest.raises(ValidationError):
        store_service.get_all(ctx, PRODUCTS, index='colour')


def test_mutations_are_audited_with_actor(ctx):
    ctx.identity_provider = lambda: ('7', 'Ana')
    store_service.add(ctx, PRODUCTS, make_product(1))
    store_service.update(ctx, PRODUCTS, make_product(1, stock=1))
    store_service.delete(ctx, PRODUCTS, '1')

    entries = audit_service.query(ctx)
    assert [e['action'] for e in entries] == ['delete', 'update', 'add']
    assert all(e['userId'] == '7' and e['userName'] == 'Ana' for e in entries)
    assert '"store": "products"' in entries[0]['details']


def test_actor_defaults_to_system(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    entry = audit_service.query(ctx, limit=1)[0]
    assert entry['userId'] == 'unknown'
    assert entry['userName'] == 'System'


def test_write_stamps_last_save_marker(ctx):
    assert ctx.flat_storage.get_item(LAST_SAVE_KEY) is None
    store_service.add(ctx, PRODUCTS, make_product(1))
    assert ctx.flat_storage.get_item(LAST_SAVE_KEY).endswith('Z')


def test_audit_log_is_append_only(ctx):
    with pytest.raises(ValidationError):
        store_service.add(ctx, AUDIT_LOG, {'id': 1})
    with pytest.raises(ValidationError):
        store_service.clear_collection(ctx, AUDIT_LOG)


def test_clear_collection(ctx):
    store_service.bulk_add(ctx, SALES, [make_sale(i) for i in range(3)])
    assert store_service.clear_collection(ctx, SALES) == 3
    assert store_service.get_all(ctx, SALES) == []


def test_settings_fall_back_to_defaults(ctx):
    assert store_service.get_setting(ctx, 'defaultTax') == DEFAULT_SETTINGS['defaultTax']
    store_service.set_setting(ctx, 'defaultTax', 8)
    assert store_service.get_setting(ctx, 'defaultTax') == 8
    assert store_service.get_setting(ctx, 'missing', default='x') == 'x'


def test_save_system_data_replaces_present_collections_only(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    store_service.add(ctx, SALES, make_sale(1))

    store_service.save_system_data(ctx, {'products': [make_product(2), make_product(3)]}, create_backup=False)

    data = store_service.get_system_data(ctx)
    assert sorted(p['id'] for p in data['products']) == ['2', '3']
    assert [s['id'] for s in data['sales']] == ['1']


def test_save_system_data_is_all_or_nothing(ctx):
    from stockroom.errors import TransactionAbortError

    store_service.add(ctx, PRODUCTS, make_product(1))
    bad = {'products': [make_product(2), make_product(2)], 'sales': [make_sale(5)]}

    with pytest.raises(TransactionAbortError):
        store_service.save_system_data(ctx, bad)

    data = store_service.get_system_data(ctx)
    assert [p['id'] for p in data['products']] == ['1']
    assert data['sales'] == []


def test_save_system_data_writes_settings_mapping(ctx):
    store_service.save_system_data(ctx, {'settings': {'defaultTax': 9, 'storeName': 'Corner'}}, create_backup=False)
    assert store_service.get_system_data(ctx)['settings'] == {'defaultTax': 9, 'storeName': 'Corner'}
    assert store_service.count(ctx, SETTINGS) == 2


def test_require_record_raises_not_found(ctx):
    with pytest.raises(NotFoundError):
        store_service.require_record(ctx, PRODUCTS, 'nope')


def test_database_info_reports_counts(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    info = store_service.get_database_info(ctx)
    assert info['counts'][PRODUCTS] == 1
    assert info['degraded'] is False
    assert info['metrics']['queries'] > 0
