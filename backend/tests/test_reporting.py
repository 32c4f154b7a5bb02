from datetime import datetime

import pytest

from stockroom.errors import ValidationError
from stockroom.models import PRODUCTS, SALES
from stockroom.services import reporting_service, store_service

from factories import make_product, make_sale


@pytest.fixture
def catalogue(ctx):
    store_service.bulk_add(ctx, PRODUCTS, [
        make_product(1, name='Espresso Beans', stock=3),
        make_product(2, name='Green Tea', stock=50),
        make_product(3, name='Cold Brew Coffee', stock=9, category='drinks'),
    ])
    return ctx


def test_search_is_case_insensitive_substring(catalogue):
    hits = reporting_service.search_products(catalogue, 'COFFEE')
    assert [p['id'] for p in hits] == ['3']
    assert [p['id'] for p in reporting_service.search_products(catalogue, 'drink', field='category')] == ['3']


def test_low_stock_uses_threshold(catalogue):
    assert sorted(p['id'] for p in reporting_service.get_low_stock_products(catalogue)) == ['1', '3']
    assert [p['id'] for p in reporting_service.get_low_stock_products(catalogue, 5)] == ['1']


def test_low_stock_reads_numeric_text(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock='3'))
    store_service.add(ctx, PRODUCTS, make_product(2, stock='40'))
    store_service.add(ctx, PRODUCTS, make_product(3, stock='n/a'))
    assert [p['id'] for p in reporting_service.get_low_stock_products(ctx, 10)] == ['1']


def test_sales_by_date_range_is_inclusive(ctx):
    store_service.bulk_add(ctx, SALES, [
        make_sale(1, date='2026-03-01T00:00:00.000Z'),
        make_sale(2, date='2026-03-15T00:00:00.000Z'),
        make_sale(3, date='2026-04-01T00:00:00.000Z'),
    ])
    found = reporting_service.get_sales_by_date_range(ctx, '2026-03-01T00:00:00.000Z', '2026-03-15T00:00:00.000Z')
    assert [s['id'] for s in found] == ['1', '2']


def test_sales_by_date_range_requires_both_bounds(ctx):
    with pytest.raises(ValidationError):
        reporting_service.get_sales_by_date_range(ctx, '2026-03-01', None)


def test_top_selling_products_by_quantity(ctx):
    now = datetime(2026, 6, 15, 12, 0)
    store_service.bulk_add(ctx, SALES, [
        make_sale(1, date='2026-06-15T09:00:00.000Z', items=[
            {'productId': '1', 'name': 'Espresso Beans', 'quantity': 1, 'price': 20.0},
            {'productId': '2', 'name': 'Green Tea', 'quantity': 4, 'price': 5.0},
        ]),
        make_sale(2, date='2026-05-01T09:00:00.000Z', items=[
            {'productId': '1', 'name': 'Espresso Beans', 'quantity': 6, 'price': 20.0},
        ]),
    ])

    overall = reporting_service.get_top_selling_products(ctx, now=now)
    assert [(r['productId'], r['quantity']) for r in overall] == [('1', 7), ('2', 4)]
    assert overall[0]['revenue'] == 140.0

    today = reporting_service.get_top_selling_products(ctx, period='today', now=now)
    assert [r['productId'] for r in today] == ['2', '1']

    assert len(reporting_service.get_top_selling_products(ctx, limit=1, now=now)) == 1


def test_unknown_period_is_rejected(ctx):
    with pytest.raises(ValidationError):
        reporting_service.get_top_selling_products(ctx, period='decade')


def test_period_start_for_month_clamps_day():
    start = reporting_service.period_start('month', datetime(2026, 3, 31, 15, 0))
    assert start == datetime(2026, 2, 28)
