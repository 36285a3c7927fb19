import time
from decimal import Decimal

import pytest
from sqlalchemy import select

from batch_import.core.errors import ProductApplyError
from batch_import.db.models.product import Product
from batch_import.services.product_applier import (
    ApplyResult,
    ApplyTimeout,
    SqlProductApplier,
    TimedApplier,
    import_key,
)
from batch_import.services.row_validator import ProductCommand


def command(sku="SKU-1", **overrides):
    fields = dict(
        sku=sku,
        name="Shirt",
        price=Decimal("19.99"),
        tags=["summer"],
        attributes={"color": ["Red"]},
    )
    fields.update(overrides)
    return ProductCommand(**fields)


def test_creates_product_tagged_with_import_key(session_factory):
    applier = SqlProductApplier(session_factory)

    result = applier.apply("job-1", 3, command(sale_price=Decimal("9.50")))

    assert result.created
    with session_factory() as session:
        product = session.get(Product, result.product_id)
        assert product.import_key == import_key("job-1", 3) == "job-1:3"
        assert product.sku == "SKU-1"
        assert product.sale_price == Decimal("9.50")
        assert product.tags == ["summer"]
        assert product.attributes == {"color": ["Red"]}


def test_draft_product_is_stored_inactive_with_minimum_price(session_factory):
    applier = SqlProductApplier(session_factory)

    result = applier.apply("job-1", 4, command(active=False, minimum_price=Decimal("7.00")))

    with session_factory() as session:
        product = session.get(Product, result.product_id)
        assert product.active is False
        assert product.minimum_price == Decimal("7.00")


def test_same_row_is_never_created_twice(session_factory):
    applier = SqlProductApplier(session_factory)
    first = applier.apply("job-1", 1, command())

    again = applier.apply("job-1", 1, command())

    assert again == ApplyResult(first.product_id, created=False)
    with session_factory() as session:
        assert len(session.scalars(select(Product)).all()) == 1


def test_sku_conflict_is_case_insensitive(session_factory):
    applier = SqlProductApplier(session_factory)
    applier.apply("job-1", 1, command("ABC-1"))

    with pytest.raises(ProductApplyError) as excinfo:
        applier.apply("job-2", 1, command("abc-1"))

    assert "already exists" in str(excinfo.value)


class SlowApplier:
    def __init__(self, delay):
        self.delay = delay

    def apply(self, job_id, row_number, command):
        time.sleep(self.delay)
        return ApplyResult(row_number)


def test_timed_applier_abandons_slow_calls():
    applier = TimedApplier(SlowApplier(0.5), timeout_seconds=0.05)

    with pytest.raises(ApplyTimeout):
        applier.apply("job", 1, command())

    applier.close()


def test_timed_applier_returns_fast_results_and_zero_disables_timeout():
    timed = TimedApplier(SlowApplier(0), timeout_seconds=1)
    assert timed.apply("job", 2, command()).product_id == 2
    timed.close()

    direct = TimedApplier(SlowApplier(0.01), timeout_seconds=0)
    assert direct.apply("job", 3, command()).product_id == 3
