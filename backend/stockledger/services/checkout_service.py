"""
Checkout Service - sale movements emitted at transaction time

WHY: A completed transaction must move stock in the same flow that records
it. Each line item becomes exactly one 'sale' movement and decrements the
product's stock_qty; re-processing the same transaction is a no-op, which is
also what makes the historic backfill safe to re-run.

Failure policy:
- Writing the transaction row is fatal to the checkout (the caller sees it).
- Every line item after that is catch, log, continue. A missing product or a
  failed movement never un-does the checkout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from functools import partial

from flask import current_app

from ..extensions import db
from ..models import Shop, StockMovement, Transaction
from ..validation import enforce_rules_checkout
from .concurrency import run_with_retry
from .movement_store import (
    DuplicateMovementError,
    NotFoundError,
    ProcessingError,
    StockLedgerError,
    StoreError,
    TRANSACTION_STATUS_COMPLETED,
    create_transaction,
    fetch_completed_transactions,
    get_product,
    has_transaction_movement,
    insert_movement,
    update_product_stock,
)
from .stock_calculations import (
    MOVEMENT_TYPE_SALE,
    REFERENCE_TYPE_TRANSACTION,
    stock_after_sale,
)


@dataclass
class EmissionResult:
    movements_created: int = 0
    already_applied: int = 0
    missing_products: int = 0
    errors: list[ProcessingError] = field(default_factory=list)
    movements: list[StockMovement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "movementsCreated": self.movements_created,
            "alreadyApplied": self.already_applied,
            "missingProducts": self.missing_products,
            "errors": [e.to_dict() for e in self.errors],
            "movements": [m.to_dict() for m in self.movements],
        }


@dataclass
class BackfillResult:
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    movements_created: int = 0
    error_details: list[ProcessingError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "movementsCreated": self.movements_created,
            "errorDetails": [e.to_dict() for e in self.error_details],
        }


def _line_quantity(item: dict) -> int:
    return int(item.get("quantity") or item.get("qty") or 1)


def _apply_sale_line(transaction: Transaction, product_id: int, quantity: int, line_no: int) -> StockMovement:
    """Lock the product, decrement its stock and append the sale movement, then commit."""
    product = get_product(product_id, lock=True)
    if product.shop_id != transaction.shop_id:
        raise StockLedgerError(
            f"Product {product_id} does not belong to shop {transaction.shop_id}",
            details={"product_shop_id": product.shop_id},
        )

    stock_before = product.stock_qty or 0
    stock_after = update_product_stock(product.id, stock_after_sale(stock_before, quantity))

    movement = insert_movement(
        product_id=product.id,
        shop_id=product.shop_id,
        type=MOVEMENT_TYPE_SALE,
        quantity=-quantity,
        stock_before=stock_before,
        stock_after=stock_after,
        reference_type=REFERENCE_TYPE_TRANSACTION,
        reference_id=str(transaction.id),
        reference_line=line_no,
        user_id=transaction.user_id,
        created_at=transaction.created_at,
    )
    db.session.commit()
    return movement


def emit_sale_movements(transaction: Transaction) -> EmissionResult:
    """
    Apply every line of a completed transaction to the stock ledger.

    Lines run in order, so two lines for the same product chain: the second
    line's stock_before is the first line's stock_after. A line that already
    has its movement is skipped; a line that failed earlier is applied on
    re-processing.
    """
    result = EmissionResult()
    log = current_app.logger

    if transaction.status != TRANSACTION_STATUS_COMPLETED:
        log.info("Transaction %s is %s; no stock movements emitted", transaction.id, transaction.status)
        return result

    for line_no, item in enumerate(transaction.items or [], start=1):
        product_id = item.get("product_id")
        quantity = _line_quantity(item)

        if product_id is None:
            log.warning("Line %d of transaction %s has no product_id, skipping", line_no, transaction.id)
            result.missing_products += 1
            continue

        try:
            if has_transaction_movement(transaction.id, product_id, line_no):
                log.debug("Transaction %s line %d already applied to product %s", transaction.id, line_no, product_id)
                result.already_applied += 1
                continue

            movement = run_with_retry(partial(_apply_sale_line, transaction, product_id, quantity, line_no))
        except NotFoundError:
            db.session.rollback()
            log.warning("Product %s not found, skipping line %d of transaction %s", product_id, line_no, transaction.id)
            result.missing_products += 1
            continue
        except DuplicateMovementError:
            # Lost the race against another writer; the line is applied either way
            db.session.rollback()
            result.already_applied += 1
            continue
        except Exception as exc:
            db.session.rollback()
            log.exception("Failed to emit stock movement for transaction %s line %d", transaction.id, line_no)
            result.errors.append(ProcessingError(product_id=product_id, error=str(exc)))
            continue

        result.movements_created += 1
        result.movements.append(movement)
        log.info(
            "Product %s: %d -> %d (transaction %s line %d)",
            product_id, movement.stock_before, movement.stock_after, transaction.id, line_no,
        )

    return result


def create_checkout(
    shop_id: int,
    items: list[dict],
    *,
    user_id: int | None = None,
    customer_id: int | None = None,
    created_at: datetime | None = None,
) -> tuple[Transaction, EmissionResult]:
    """
    Record a completed transaction, then emit its sale movements.

    Raises ValidationError / NotFoundError / StoreError when the transaction
    itself cannot be written. Stock emission problems are reported in the
    returned EmissionResult only.
    """
    patch = {"items": items}
    enforce_rules_checkout(patch)
    lines = patch["items"]

    if db.session.get(Shop, shop_id) is None:
        raise NotFoundError(f"Shop {shop_id} not found")

    fields = dict(
        shop_id=shop_id,
        user_id=user_id,
        customer_id=customer_id,
        items=lines,
        total_amount=sum(line["price"] * line["quantity"] for line in lines),
        status=TRANSACTION_STATUS_COMPLETED,
    )
    if created_at is not None:
        fields["created_at"] = created_at

    try:
        transaction = create_transaction(**fields)
        db.session.commit()
    except StoreError:
        db.session.rollback()
        raise

    current_app.logger.info("Checkout %s recorded for shop %s (%d lines)", transaction.id, shop_id, len(lines))
    return transaction, emit_sale_movements(transaction)


def backfill_stock_movements(shop_id: int | None = None) -> BackfillResult:
    """
    Replay every completed transaction, oldest first, through emit_sale_movements.

    Transactions whose lines were all applied earlier count as skipped.
    """
    log = current_app.logger
    transactions = fetch_completed_transactions(shop_id)
    log.info("Backfill: %d completed transactions to process", len(transactions))

    result = BackfillResult()
    for transaction in transactions:
        result.processed += 1
        emission = emit_sale_movements(transaction)

        line_count = len(transaction.items or [])
        if line_count and emission.already_applied == line_count:
            result.skipped += 1

        result.movements_created += emission.movements_created
        result.errors += len(emission.errors)
        result.error_details.extend(emission.errors)

    log.info(
        "Backfill completed: processed=%d skipped=%d movements=%d errors=%d",
        result.processed, result.skipped, result.movements_created, result.errors,
    )
    return result
