# Overview: Data access for products, stock movements and transactions; maps ledger operations to SQLAlchemy.

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Product, StockMovement, Transaction
from ..validation import ValidationError
from .concurrency import lock_for_update
from .stock_calculations import (
    MOVEMENT_TYPE_INITIAL,
    REFERENCE_TYPE_INITIAL,
    REFERENCE_TYPE_TRANSACTION,
    clamp_stock,
    validate_movement,
)

"""
Movement store rules:

- No business logic beyond mapping; arithmetic lives in stock_calculations.
- Every SQLAlchemy failure surfaces as StoreError (original exception chained).
- Writes flush but never commit. The orchestration layer owns commit/rollback
  so a product's stock and its movements land together.
"""

TRANSACTION_STATUS_COMPLETED = "completed"


class StockLedgerError(Exception):
    """Base class for stock ledger failures."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class StoreError(StockLedgerError):
    """Persistence failure: connection, permission or constraint violation."""


class DuplicateMovementError(StoreError):
    """The (product, reference, line) uniqueness constraint rejected an insert."""


class NotFoundError(StockLedgerError):
    """A product, movement or transaction was expected but is absent."""


@dataclass
class ProcessingError:
    error: str
    product_id: Any = None
    product_name: str | None = None
    movement_id: Any = None

    def to_dict(self) -> dict:
        out: dict = {"error": self.error}
        if self.product_id is not None:
            out["productId"] = self.product_id
        if self.product_name is not None:
            out["productName"] = self.product_name
        if self.movement_id is not None:
            out["movementId"] = self.movement_id
        return out


@dataclass
class BatchUpdateResult:
    updated_count: int = 0
    errors: list[ProcessingError] = field(default_factory=list)


@contextmanager
def _store_errors(action: str):
    try:
        yield
    except SQLAlchemyError as exc:
        reason = getattr(exc, "orig", None) or exc
        raise StoreError(f"Failed to {action}: {reason}") from exc


def _initial_filter():
    return or_(
        StockMovement.type == MOVEMENT_TYPE_INITIAL,
        StockMovement.reference_type == REFERENCE_TYPE_INITIAL,
    )


def fetch_all_products(shop_id: int | None = None) -> list[Product]:
    with _store_errors("fetch products"):
        q = db.session.query(Product)
        if shop_id is not None:
            q = q.filter(Product.shop_id == shop_id)
        return q.order_by(Product.id.asc()).all()


def get_product(product_id: int, *, lock: bool = False) -> Product:
    with _store_errors(f"fetch product {product_id}"):
        q = db.session.query(Product).filter_by(id=product_id)
        if lock:
            q = lock_for_update(q)
        product = q.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def fetch_product_movements(
    product_id: int,
    *,
    exclude_initial: bool = False,
    ascending: bool = True,
) -> list[StockMovement]:
    """
    All movements of a product in chronological order (id breaks timestamp ties).

    Returns an empty list when the product has none.
    """
    with _store_errors("fetch movements"):
        q = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
        if exclude_initial:
            # NULL-safe negation of _initial_filter()
            q = q.filter(
                StockMovement.type != MOVEMENT_TYPE_INITIAL,
                or_(
                    StockMovement.reference_type.is_(None),
                    StockMovement.reference_type != REFERENCE_TYPE_INITIAL,
                ),
            )
        if ascending:
            q = q.order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
        else:
            q = q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        return q.all()


def fetch_initial_stock_movement(product_id: int) -> StockMovement | None:
    """The product's initial movement, or None when the ledger was never seeded."""
    with _store_errors("fetch initial stock"):
        return (
            db.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id, _initial_filter())
            .order_by(StockMovement.created_at.asc(), StockMovement.id.asc())
            .first()
        )


def update_product_stock(product_id: int, new_stock: int) -> int:
    """Persist clamp_stock(new_stock) as the product's stock_qty and return it."""
    product = get_product(product_id)
    stock_qty = clamp_stock(new_stock)
    with _store_errors("update product stock"):
        product.stock_qty = stock_qty
        db.session.flush()
    return stock_qty


def _update_fields(update: Any) -> tuple[Any, int, int]:
    if isinstance(update, Mapping):
        return update["id"], update["stock_before"], update["stock_after"]
    return update.movement_id, update.stock_before, update.stock_after


def batch_update_movements(updates: Iterable[Any], *, batch_size: int | None = None) -> BatchUpdateResult:
    """
    Rewrite stock_before/stock_after movement by movement.

    Not atomic as a set: each row is written inside its own SAVEPOINT, so a
    failing row is recorded and the remaining rows still apply.
    """
    if batch_size is None:
        batch_size = current_app.config.get("STOCK_BATCH_SIZE", 50)
    batch_size = max(1, int(batch_size))

    pending = list(updates)
    result = BatchUpdateResult()

    for start in range(0, len(pending), batch_size):
        for update in pending[start:start + batch_size]:
            movement_id, stock_before, stock_after = _update_fields(update)
            try:
                with db.session.begin_nested():
                    movement = db.session.get(StockMovement, movement_id)
                    if movement is None:
                        raise NotFoundError(f"Movement {movement_id} not found")
                    movement.stock_before = stock_before
                    movement.stock_after = stock_after
                result.updated_count += 1
            except (SQLAlchemyError, NotFoundError) as exc:
                result.errors.append(ProcessingError(movement_id=movement_id, error=str(exc)))
        current_app.logger.debug(
            "Movement batch: %d/%d updated", result.updated_count, len(pending),
        )

    return result


def insert_movement(**fields) -> StockMovement:
    """Validate and insert one movement row (flushed, not committed)."""
    errors = validate_movement(fields)
    if errors:
        raise ValidationError("; ".join(errors))

    movement = StockMovement(**fields)
    db.session.add(movement)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise DuplicateMovementError(
            f"Movement already recorded for {fields.get('reference_type')} {fields.get('reference_id')}",
            details={"product_id": fields.get("product_id"), "reference_line": fields.get("reference_line")},
        ) from exc
    except SQLAlchemyError as exc:
        raise StoreError(f"Failed to create stock movement: {getattr(exc, 'orig', None) or exc}") from exc
    return movement


def upsert_initial_stock(product: Product, initial_stock: int) -> str:
    """
    Seed or overwrite a product's initial movement.

    Returns "updated" when an initial movement already existed, otherwise
    "created". New rows are dated at the product's creation time so they sort
    before every later movement.
    """
    existing = fetch_initial_stock_movement(product.id)

    if existing is not None:
        with _store_errors("update initial stock"):
            existing.type = MOVEMENT_TYPE_INITIAL
            existing.quantity = initial_stock
            existing.stock_before = 0
            existing.stock_after = initial_stock
            db.session.flush()
        return "updated"

    insert_movement(
        product_id=product.id,
        shop_id=product.shop_id,
        type=MOVEMENT_TYPE_INITIAL,
        quantity=initial_stock,
        stock_before=0,
        stock_after=initial_stock,
        reference_type=REFERENCE_TYPE_INITIAL,
        reference_id=None,
        created_at=product.created_at,
    )
    return "created"


def has_transaction_movement(
    transaction_id: Any,
    product_id: int | None = None,
    reference_line: int | None = None,
) -> bool:
    """
    Idempotence guard: has this transaction already moved stock?

    Narrowed by product and by line when given. Rows written without a
    reference_line apply to every line of their product.
    """
    with _store_errors("check transaction movements"):
        q = db.session.query(StockMovement.id).filter(
            and_(
                StockMovement.reference_type == REFERENCE_TYPE_TRANSACTION,
                StockMovement.reference_id == str(transaction_id),
            )
        )
        if product_id is not None:
            q = q.filter(StockMovement.product_id == product_id)
        if reference_line is not None:
            q = q.filter(or_(
                StockMovement.reference_line == reference_line,
                StockMovement.reference_line.is_(None),
            ))
        return db.session.query(q.exists()).scalar()


def create_transaction(**fields) -> Transaction:
    with _store_errors("create transaction"):
        transaction = Transaction(**fields)
        db.session.add(transaction)
        db.session.flush()
    return transaction


def get_transaction(transaction_id: int) -> Transaction:
    with _store_errors(f"fetch transaction {transaction_id}"):
        transaction = db.session.get(Transaction, transaction_id)
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return transaction


def fetch_transaction_movements(transaction_id: Any) -> list[StockMovement]:
    with _store_errors("fetch transaction movements"):
        return (
            db.session.query(StockMovement)
            .filter(
                StockMovement.reference_type == REFERENCE_TYPE_TRANSACTION,
                StockMovement.reference_id == str(transaction_id),
            )
            .order_by(StockMovement.reference_line.asc(), StockMovement.id.asc())
            .all()
        )


def fetch_completed_transactions(shop_id: int | None = None) -> list[Transaction]:
    """Completed transactions, oldest first (backfill replay order)."""
    with _store_errors("fetch transactions"):
        q = db.session.query(Transaction).filter(Transaction.status == TRANSACTION_STATUS_COMPLETED)
        if shop_id is not None:
            q = q.filter(Transaction.shop_id == shop_id)
        return q.order_by(Transaction.created_at.asc(), Transaction.id.asc()).all()
