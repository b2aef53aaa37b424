# Overview: Whole-catalog stock maintenance passes; per-product failures are collected, never raised.

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial

from flask import current_app

from ..extensions import db
from ..models import Product
from ..validation import ValidationError
from .concurrency import run_with_retry
from .movement_store import (
    ProcessingError,
    batch_update_movements,
    fetch_all_products,
    fetch_product_movements,
    update_product_stock,
    upsert_initial_stock,
)
from .stock_calculations import (
    RepairStrategy,
    compute_final_stock,
    compute_progression,
    sort_by_date,
)

"""
Reconciliation rules (authoritative)

- Products are processed one at a time; each product commits on its own.
- A failing product is rolled back, logged and recorded in ProcessingStats.
  The pass always finishes and reports.
- Every pass is safe to re-run. Products that succeeded converge to the same
  end state, products that failed get another attempt.
- full-sync = sync-initial followed by recalculate.
- recalculate (REPLAY_FROM_ZERO) and recalculate-from-initial
  (TRUST_CURRENT_AS_INITIAL) use different ground truths and may disagree.
  REPLAY_FROM_ZERO is the canonical repair.
"""

OP_SYNC_INITIAL = "sync-initial"
OP_RECALCULATE = "recalculate"
OP_FULL_SYNC = "full-sync"
OP_RECALCULATE_FROM_INITIAL = "recalculate-from-initial"

OPERATIONS = (OP_SYNC_INITIAL, OP_RECALCULATE, OP_FULL_SYNC, OP_RECALCULATE_FROM_INITIAL)

STRATEGY_OPERATIONS = {
    RepairStrategy.REPLAY_FROM_ZERO: OP_RECALCULATE,
    RepairStrategy.TRUST_CURRENT_AS_INITIAL: OP_RECALCULATE_FROM_INITIAL,
}


@dataclass
class ProcessingStats:
    total_products: int = 0
    total_processed: int = 0
    total_errors: int = 0
    errors: list[ProcessingError] = field(default_factory=list)

    def record_error(self, error: ProcessingError) -> None:
        self.total_errors += 1
        self.errors.append(error)

    def to_dict(self) -> dict:
        return {
            "totalProducts": self.total_products,
            "totalProcessed": self.total_processed,
            "totalErrors": self.total_errors,
            "errors": [e.to_dict() for e in self.errors],
        }


def _process_product(product: Product, stats: ProcessingStats, step, label: str) -> None:
    """
    Run one product step under retry and commit it.

    A step returns None when the product was skipped, otherwise the list of
    movement-level errors it tolerated.
    """
    # Capture identity up front: a rollback expires the instance
    product_id, product_name = product.id, product.name
    try:
        movement_errors = run_with_retry(partial(step, product))
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        current_app.logger.warning("[%s] %s (id=%s) failed: %s", label, product_name, product_id, exc)
        stats.record_error(ProcessingError(product_id=product_id, product_name=product_name, error=str(exc)))
        return

    if movement_errors is None:
        return
    stats.total_processed += 1
    for error in movement_errors:
        error.product_id = product_id
        error.product_name = product_name
        stats.record_error(error)


def _sync_initial_step(product: Product) -> list[ProcessingError]:
    initial_stock = product.stock_qty or 0
    outcome = upsert_initial_stock(product, initial_stock)
    current_app.logger.info("[sync-initial] %s: initial stock = %d (%s)", product.name, initial_stock, outcome)
    return []


def _recalculate_step(product: Product) -> list[ProcessingError] | None:
    movements = sort_by_date(fetch_product_movements(product.id, ascending=True), ascending=True)
    if not movements:
        current_app.logger.debug("[recalculate] %s: no movements", product.name)
        return None

    steps = compute_progression(movements)
    batch = batch_update_movements(steps)

    final_stock = steps[-1].stock_after if steps else 0
    final_stock = update_product_stock(product.id, final_stock)

    current_app.logger.info(
        "[recalculate] %s: %d/%d movements, final stock = %d",
        product.name, batch.updated_count, len(movements), final_stock,
    )
    return batch.errors


def _recalculate_from_initial_step(product: Product) -> list[ProcessingError]:
    initial_stock = product.stock_qty or 0
    movements = fetch_product_movements(product.id, exclude_initial=True)
    final_stock = update_product_stock(product.id, compute_final_stock(initial_stock, movements))

    current_app.logger.info(
        "[recalculate-from-initial] %s: %d + %d movements -> %d",
        product.name, initial_stock, len(movements), final_stock,
    )
    return []


def sync_initial_stock(products: list[Product], stats: ProcessingStats) -> ProcessingStats:
    """
    Seed each product's initial movement from its current stock_qty.

    Meant for bootstrapping a ledger over a catalog that predates it; after
    sales have been recorded this overwrites the initial quantity with the
    post-sale stock.
    """
    for product in products:
        _process_product(product, stats, _sync_initial_step, OP_SYNC_INITIAL)
    return stats


def recalculate_stock_movements(products: list[Product], stats: ProcessingStats) -> ProcessingStats:
    """Replay each product's ledger from 0, rewrite snapshots and set stock_qty to the last stock_after."""
    for product in products:
        _process_product(product, stats, _recalculate_step, OP_RECALCULATE)
    return stats


def recalculate_from_initial(products: list[Product], stats: ProcessingStats) -> ProcessingStats:
    """
    Treat stock_qty as the starting point and add every non-initial movement on top.

    Not idempotent: each run adds the same movements again. Run it once, on
    stock_qty values known to predate the ledger; recalculate is the pass
    that is safe to repeat.
    """
    for product in products:
        _process_product(product, stats, _recalculate_from_initial_step, OP_RECALCULATE_FROM_INITIAL)
    return stats


def run_operation(operation: str, *, shop_id: int | None = None) -> ProcessingStats:
    """
    Run a maintenance pass over the catalog (optionally one shop).

    Raises ValidationError for an unknown operation and StoreError when the
    catalog itself cannot be loaded; everything else lands in the stats.
    """
    if operation not in OPERATIONS:
        raise ValidationError(f"operation must be one of: {', '.join(OPERATIONS)}")

    log = current_app.logger
    log.info("[Stock Management] Starting operation: %s", operation)

    products = fetch_all_products(shop_id)
    stats = ProcessingStats(total_products=len(products))

    if operation in (OP_SYNC_INITIAL, OP_FULL_SYNC):
        sync_initial_stock(products, stats)

    if operation in (OP_RECALCULATE, OP_FULL_SYNC):
        recalculate_stock_movements(products, stats)

    if operation == OP_RECALCULATE_FROM_INITIAL:
        recalculate_from_initial(products, stats)

    log.info(
        "[Stock Management] Completed %s: %d/%d products, %d errors",
        operation, stats.total_processed, stats.total_products, stats.total_errors,
    )
    return stats


def repair_stock(strategy: RepairStrategy | str, *, shop_id: int | None = None) -> ProcessingStats:
    if not isinstance(strategy, RepairStrategy):
        try:
            strategy = RepairStrategy(strategy)
        except ValueError:
            choices = ", ".join(s.value for s in RepairStrategy)
            raise ValidationError(f"strategy must be one of: {choices}")
    return run_operation(STRATEGY_OPERATIONS[strategy], shop_id=shop_id)
