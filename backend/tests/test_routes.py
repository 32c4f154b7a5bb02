import json

from stockroom.services import audit_service

from factories import make_product, make_sale


def test_health_reports_healthy(client):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'healthy'
    assert body['checks']['database']['status'] == 'healthy'


def test_version(client):
    body = client.get('/version').get_json()
    assert body['schema_version'] == 3
    assert 'python_version' in body


def test_product_crud(client):
    created = client.post('/api/products', json=make_product(1, name='Coffee'))
    assert created.status_code == 201
    assert created.get_json()['id'] == '1'

    assert client.get('/api/products/1').get_json()['name'] == 'Coffee'

    updated = client.put('/api/products/1', json=make_product(1, name='Dark Coffee'))
    assert updated.status_code == 200
    assert client.get('/api/products').get_json()['items'][0]['name'] == 'Dark Coffee'

    assert client.delete('/api/products/1').status_code == 200
    assert client.get('/api/products/1').status_code == 404
    assert client.delete('/api/products/1').status_code == 404


def test_duplicate_product_is_conflict(client):
    client.post('/api/products', json=make_product(1))
    assert client.post('/api/products', json=make_product(1)).status_code == 409


def test_invalid_body_is_bad_request(client):
    assert client.post('/api/products', json=['not', 'an', 'object']).status_code == 400
    assert client.put('/api/products/1', json=make_product(2)).status_code == 400


def test_bulk_partial_failure_is_multi_status(client):
    client.post('/api/products', json=make_product(2))
    response = client.post('/api/products/bulk', json={'items': [make_product(1), make_product(2)]})
    assert response.status_code == 207
    body = response.get_json()
    assert body['inserted'] == 1
    assert body['failed'] == 1


def test_product_search_and_low_stock(client):
    client.post('/api/products/bulk', json=[make_product(1, name='Tea', stock=2), make_product(2, name='Mug')])
    assert [p['id'] for p in client.get('/api/products/search?q=tea').get_json()['items']] == ['1']
    assert [p['id'] for p in client.get('/api/products/low-stock').get_json()['items']] == ['1']


def test_index_range_via_query_params(client):
    client.post('/api/sales/bulk', json=[
        make_sale(1, date='2026-01-01T00:00:00.000Z'),
        make_sale(2, date='2026-02-01T00:00:00.000Z'),
    ])
    body = client.get('/api/sales?index=date&lower=2026-01-15').get_json()
    assert [s['id'] for s in body['items']] == ['2']
    assert client.get('/api/sales?index=colour').status_code == 400


def test_sales_reports(client):
    client.post('/api/sales', json=make_sale(1, date='2026-03-01T00:00:00.000Z'))
    ranged = client.get('/api/sales/range?start=2026-02-01&end=2026-04-01').get_json()
    assert [s['id'] for s in ranged['items']] == ['1']
    top = client.get('/api/sales/top-products?limit=5').get_json()
    assert top['items'][0]['productId'] == '1'
    assert client.get('/api/sales/range?start=2026-02-01').status_code == 400


def test_settings_routes(client):
    everything = client.get('/api/settings').get_json()
    assert everything['defaultCreditFee'] == 4.5

    default = client.get('/api/settings/defaultTax').get_json()
    assert default == {'key': 'defaultTax', 'value': 6, 'default': True}

    assert client.put('/api/settings/defaultTax', json={'value': 8}).status_code == 200
    assert client.get('/api/settings/defaultTax').get_json()['value'] == 8
    assert client.get('/api/settings/unknownKey').status_code == 404
    assert client.put('/api/settings/defaultTax', json={}).status_code == 400


def test_audit_records_request_actor(client, ctx):
    client.post('/api/products', json=make_product(1), headers={'X-User-Id': '42', 'X-User-Name': 'Bea'})
    entries = client.get('/api/store/audit?action=add').get_json()['items']
    assert entries[0]['userId'] == '42'
    assert entries[0]['userName'] == 'Bea'
    assert client.get('/api/store/audit?userId=nobody').get_json()['count'] == 0
    assert client.get('/api/store/audit?startDate=yesterday').status_code == 400


def test_backup_and_restore_routes(client):
    client.post('/api/products', json=make_product(1))
    created = client.post('/api/store/backups', json={'type': 'manual'})
    assert created.status_code == 201
    timestamp = created.get_json()['timestamp']

    client.delete('/api/products/1')

    listing = client.get('/api/store/backups?type=manual').get_json()
    assert listing['items'][0]['timestamp'] == timestamp
    assert 'data' not in listing['items'][0]

    assert client.post(f'/api/store/backups/{timestamp}/restore').status_code == 200
    assert client.get('/api/products/1').status_code == 200
    assert client.post('/api/store/backups/nope/restore').status_code == 404


def test_export_then_import(client):
    client.post('/api/products', json=make_product(1))
    exported = client.get('/api/store/export')
    assert exported.status_code == 200
    document = json.loads(exported.get_data(as_text=True))

    client.post('/api/products', json=make_product(2))
    imported = client.post('/api/store/import', json=document)
    assert imported.status_code == 200
    assert imported.get_json()['products'] == 1
    assert client.get('/api/products').get_json()['count'] == 1

    assert client.post('/api/store/import', json={'data': {}}).status_code == 400


def test_integrity_route(client):
    client.post('/api/products', json=make_product(1, stock=-2))
    body = client.post('/api/store/integrity').get_json()
    assert body['clean'] is False
    assert body['issues'][0]['kind'] == 'negative_stock'
    assert client.get('/api/products/1').get_json()['stock'] == 0


def test_sync_and_cleanup_routes(client, ctx):
    sync = client.post('/api/store/sync')
    assert sync.status_code == 200
    assert sync.get_json()['changes_detected'] is True

    quick = client.post('/api/store/sync?quick=1')
    assert quick.get_json()['backup_timestamp']

    cleanup = client.post('/api/store/cleanup')
    assert cleanup.status_code == 200
    assert cleanup.get_json() == {'audit_pruned': 0}


def test_cleanup_route_ignores_caller_retention(client, ctx):
    client.post('/api/products', json=make_product(1))
    client.post('/api/products', json=make_product(2))
    before = len(audit_service.query(ctx, limit=100))
    assert before >= 2

    response = client.post('/api/store/cleanup', json={'retention_days': -1, 'older_than_years': 0})
    assert response.status_code == 200
    assert response.get_json()['audit_pruned'] == 0
    assert len(audit_service.query(ctx, limit=100)) >= before


def test_migrate_route(client, ctx):
    from stockroom.services.flat_storage import LEGACY_DATA_KEY

    ctx.flat_storage.set_json(LEGACY_DATA_KEY, {'products': [make_product(5)], 'sales': [], 'settings': {}})
    body = client.post('/api/store/migrate', json={}).get_json()
    assert body['mode'] == 'fast_path'
    assert client.get('/api/products/5').status_code == 200
    assert audit_service.query(ctx, action='migration_complete')


def test_info_and_compact(client):
    info = client.get('/api/store/info').get_json()
    assert info['degraded'] is False
    assert client.post('/api/store/compact').get_json() == {'compacted': True}
