# Overview: Pure stock ledger arithmetic; no database or Flask access.

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import accumulate
from typing import Any, Iterable, Mapping, Sequence

"""
Stock Ledger Invariants (authoritative)

- For one product, movements sorted by created_at ascending satisfy
    stock_after[i] == stock_before[i] + quantity[i]
    stock_before[i + 1] == stock_after[i]
  and the first movement starts from stock_before == 0.
- The running total is NOT clamped while folding; only values persisted as a
  product's stock_qty pass through clamp_stock().
- Callers supply movements already in chronological order; compute_progression
  never re-sorts.
"""

MOVEMENT_TYPE_INITIAL = "initial"
MOVEMENT_TYPE_SALE = "sale"
MOVEMENT_TYPES = (
    MOVEMENT_TYPE_INITIAL,
    MOVEMENT_TYPE_SALE,
    "purchase",
    "restock",
    "opname",
    "cancel_return",
    "adjustment",
)

REFERENCE_TYPE_INITIAL = "initial stock"
REFERENCE_TYPE_TRANSACTION = "transaction"


class RepairStrategy(enum.Enum):
    """
    The two independent ways of restoring the stock invariant.

    REPLAY_FROM_ZERO trusts the movement log and rebuilds every snapshot from
    0 (canonical). TRUST_CURRENT_AS_INITIAL trusts products.stock_qty as the
    starting point and adds every non-initial movement on top. They can
    disagree.
    """
    REPLAY_FROM_ZERO = "replay-from-zero"
    TRUST_CURRENT_AS_INITIAL = "trust-current-as-initial"


@dataclass(frozen=True)
class ProgressionStep:
    movement_id: Any
    stock_before: int
    stock_after: int

    def to_update(self) -> dict:
        return {
            "id": self.movement_id,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
        }


@dataclass(frozen=True)
class StockCalculationResult:
    product_id: Any
    product_name: str | None
    initial_stock: int
    total_movements: int
    final_stock: int
    movements_count: int

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "initialStock": self.initial_stock,
            "totalMovements": self.total_movements,
            "finalStock": self.final_stock,
            "movementsCount": self.movements_count,
        }


def _field(obj: Any, name: str, default: Any = None) -> Any:
    # Movements arrive as ORM rows in the services and as dicts in tests/payloads
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _quantity(movement: Any) -> int:
    return int(_field(movement, "quantity") or 0)


def clamp_stock(value: int) -> int:
    """Non-negative floor applied wherever stock is persisted (oversold -> 0)."""
    return max(0, int(value))


def compute_progression(movements: Iterable[Any]) -> list[ProgressionStep]:
    """
    Fold movements into before/after snapshots starting from 0.

    The running total may go negative here.
    """
    ordered = list(movements)
    afters = list(accumulate((_quantity(m) for m in ordered), initial=0))
    return [
        ProgressionStep(
            movement_id=_field(m, "id"),
            stock_before=afters[i],
            stock_after=afters[i + 1],
        )
        for i, m in enumerate(ordered)
    ]


def compute_final_stock(initial_stock: int, movements: Iterable[Any]) -> int:
    return clamp_stock(int(initial_stock or 0) + sum(_quantity(m) for m in movements))


def sort_by_date(movements: Iterable[Any], ascending: bool = True) -> list[Any]:
    """
    Return a new list ordered by created_at.

    Ties keep their input order in both directions.
    """
    def _key(movement: Any) -> datetime:
        value = _field(movement, "created_at")
        if isinstance(value, str):
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value or datetime.min

    # sorted() stays stable with reverse=True
    return sorted(movements, key=_key, reverse=not ascending)


def is_initial_movement(movement: Any) -> bool:
    return (
        _field(movement, "type") == MOVEMENT_TYPE_INITIAL
        or _field(movement, "reference_type") == REFERENCE_TYPE_INITIAL
    )


def validate_movement(movement: Mapping[str, Any] | Any) -> list[str]:
    """
    Collect problems with a (partial) movement.

    Never raises; the caller decides whether the errors are fatal.
    """
    errors: list[str] = []

    if not _field(movement, "product_id"):
        errors.append("product_id is required")
    if not _field(movement, "shop_id"):
        errors.append("shop_id is required")

    movement_type = _field(movement, "type")
    if not movement_type:
        errors.append("type is required")
    elif movement_type not in MOVEMENT_TYPES:
        errors.append(f"type must be one of: {', '.join(MOVEMENT_TYPES)}")

    if _field(movement, "quantity") is None:
        errors.append("quantity is required")

    return errors


def compute_product_stats(product: Any, movements: Sequence[Any]) -> StockCalculationResult:
    """Summarize a product against its non-initial movements, treating stock_qty as the start."""
    initial_stock = int(_field(product, "stock_qty") or 0)
    total = sum(_quantity(m) for m in movements)
    return StockCalculationResult(
        product_id=_field(product, "id"),
        product_name=_field(product, "name"),
        initial_stock=initial_stock,
        total_movements=total,
        final_stock=clamp_stock(initial_stock + total),
        movements_count=len(movements),
    )


def find_progression_breaks(movements: Sequence[Any]) -> list[dict]:
    """
    List the positions where stored snapshots violate the ledger invariant.

    Input must already be in chronological order.
    """
    breaks: list[dict] = []
    expected_before = 0
    for movement in movements:
        before = _field(movement, "stock_before")
        after = _field(movement, "stock_after")
        if before != expected_before or after != (before or 0) + _quantity(movement):
            breaks.append({
                "movement_id": _field(movement, "id"),
                "expected_before": expected_before,
                "expected_after": expected_before + _quantity(movement),
                "stock_before": before,
                "stock_after": after,
            })
        expected_before = expected_before + _quantity(movement)
    return breaks


def stock_after_sale(stock_before: int, quantity: int) -> int:
    """
    Oversell policy for checkout: selling more than is on hand floors at 0
    instead of rejecting the sale.
    """
    return clamp_stock(int(stock_before or 0) - int(quantity))
