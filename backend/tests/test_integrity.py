import json

from stockroom.models import PRODUCTS, SALES
from stockroom.services import audit_service, integrity_service, store_service

from factories import make_product, make_sale


def test_clean_store_reports_nothing_and_writes_no_audit(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1))
    store_service.add(ctx, SALES, make_sale(1))
    before = len(audit_service.query(ctx))

    assert integrity_service.check(ctx) == []
    assert len(audit_service.query(ctx)) == before


def test_negative_stock_is_clamped_and_audited(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock=-3))
    store_service.add(ctx, PRODUCTS, make_product(2, stock=4))

    issues = integrity_service.check(ctx)

    assert [i.kind for i in issues] == [integrity_service.NEGATIVE_STOCK]
    assert issues[0].repaired is True
    assert issues[0].ids == ['1']
    assert store_service.get(ctx, PRODUCTS, '1')['stock'] == 0
    assert store_service.get(ctx, PRODUCTS, '2')['stock'] == 4

    entries = audit_service.query(ctx, action='integrity_check')
    assert len(entries) == 1
    details = json.loads(entries[0]['details'])
    assert details['auto_fixed'] == ['negative_stock']


def test_negative_stock_stored_as_text_is_repaired(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock='-3'))
    store_service.add(ctx, PRODUCTS, make_product(2, stock='7'))

    issues = integrity_service.check(ctx)

    assert [i.kind for i in issues] == [integrity_service.NEGATIVE_STOCK]
    assert issues[0].ids == ['1']
    assert store_service.get(ctx, PRODUCTS, '1')['stock'] == 0
    assert store_service.get(ctx, PRODUCTS, '2')['stock'] == '7'


def test_second_run_after_repair_is_clean(ctx):
    store_service.add(ctx, PRODUCTS, make_product(1, stock=-1))
    integrity_service.check(ctx)
    assert integrity_service.check(ctx) == []


def test_sale_without_items_is_flagged_not_repaired(ctx):
    store_service.add(ctx, SALES, make_sale(1, items=[]))
    store_service.add(ctx, SALES, make_sale(2))

    issues = integrity_service.check(ctx)

    assert len(issues) == 1
    assert issues[0].kind == integrity_service.EMPTY_SALE_ITEMS
    assert issues[0].ids == ['1']
    assert issues[0].repaired is False
    assert store_service.get(ctx, SALES, '1')['items'] == []


def test_issue_description(ctx):
    issue = integrity_service.IntegrityIssue(kind=integrity_service.NEGATIVE_STOCK, count=2)
    assert issue.describe() == '2 products with negative stock'
