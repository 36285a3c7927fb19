"""Applying validated rows to the product catalog."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from batch_import.core.errors import ProductApplyError
from batch_import.db.models.product import Product
from batch_import.services.row_validator import ProductCommand

logger = logging.getLogger(__name__)


class ApplyUnavailable(ProductApplyError):
    """The product store failed or did not answer; counts toward job failure."""


class ApplyTimeout(ApplyUnavailable):
    """Product creation did not finish within the configured time."""


@dataclass(frozen=True)
class ApplyResult:
    product_id: int | None
    # False when the row had already been applied by an earlier run
    created: bool = True


def import_key(job_id: str, row_number: int) -> str:
    return f"{job_id}:{row_number}"


class SqlProductApplier:
    """Creates products in their own transaction, idempotent per (job, row)."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def apply(self, job_id: str, row_number: int, command: ProductCommand) -> ApplyResult:
        key = import_key(job_id, row_number)
        with self._session_factory() as session:
            try:
                existing_id = session.scalar(select(Product.id).where(Product.import_key == key))
                if existing_id is not None:
                    return ApplyResult(existing_id, created=False)

                conflict_id = session.scalar(
                    select(Product.id).where(func.lower(Product.sku) == command.sku.lower())
                )
                if conflict_id is not None:
                    raise ProductApplyError(
                        f"SKU '{command.sku}' already exists (product {conflict_id})"
                    )

                product = Product(
                    sku=command.sku,
                    name=command.name,
                    description=command.description,
                    catalog_id=command.catalog_id,
                    category=command.category,
                    price=command.price,
                    cost_price=command.cost_price,
                    sale_price=command.sale_price,
                    minimum_price=command.minimum_price,
                    tags=list(command.tags),
                    attributes=dict(command.attributes),
                    active=command.active,
                    is_deleted=False,
                    import_key=key,
                )
                session.add(product)
                session.commit()
                return ApplyResult(product.id)
            except IntegrityError as e:
                session.rollback()
                # A timed-out attempt may have committed the same row meanwhile
                existing_id = session.scalar(select(Product.id).where(Product.import_key == key))
                if existing_id is not None:
                    return ApplyResult(existing_id, created=False)
                raise ProductApplyError(f"SKU '{command.sku}' conflicts with an existing product") from e
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Database error creating product for row {key}: {e}", exc_info=True)
                raise ApplyUnavailable(f"Database error creating product: {e}") from e


class TimedApplier:
    """Bounds each apply call; a timed-out call is abandoned, not killed."""

    def __init__(self, applier, timeout_seconds: float) -> None:
        self._applier = applier
        self._timeout = timeout_seconds
        self._executor: ThreadPoolExecutor | None = None

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="product-apply")
        return self._executor

    def apply(self, job_id: str, row_number: int, command: ProductCommand) -> ApplyResult:
        if not self._timeout:
            return self._applier.apply(job_id, row_number, command)
        future = self._pool().submit(self._applier.apply, job_id, row_number, command)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            # The stuck worker keeps its thread; later rows get a fresh one
            self._executor.shutdown(wait=False)
            self._executor = None
            raise ApplyTimeout(
                f"Product creation timed out after {self._timeout:g} seconds"
            ) from None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
