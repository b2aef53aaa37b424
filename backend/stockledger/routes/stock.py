# Overview: Maintenance API for the stock ledger; parses input and returns JSON responses.

"""
Stock maintenance routes.

Every pass returns 200 with a stats payload once it has run, even when some
products failed. Callers must inspect stats.totalErrors; the HTTP status only
reports whether the pass could start (400 bad selector, 500 catalog not
loadable).
"""

from flask import Blueprint, request, current_app

from ..api_response import success_response, error_response
from ..validation import ValidationError
from ..services import checkout_service, reconciliation_service
from ..services.movement_store import (
    NotFoundError,
    fetch_product_movements,
    get_product,
)
from ..services.stock_calculations import (
    compute_product_stats,
    find_progression_breaks,
    is_initial_movement,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _optional_shop_id(payload: dict) -> int | None:
    shop_id = payload.get("shop_id")
    if shop_id is None:
        return None
    if isinstance(shop_id, bool) or not isinstance(shop_id, int):
        raise ValidationError("shop_id must be an integer")
    return shop_id


@stock_bp.post("/manage")
def manage_stock_route():
    """
    Run a maintenance pass.

    Request body:
    {
        "operation": "sync-initial" | "recalculate" | "full-sync" | "recalculate-from-initial",
        "shop_id": int (optional)
    }
    """
    payload = request.get_json(silent=True) or {}
    operation = payload.get("operation")
    if not operation:
        return error_response("Missing required field: operation", 400)

    try:
        shop_id = _optional_shop_id(payload)
        stats = reconciliation_service.run_operation(operation, shop_id=shop_id)
    except ValidationError as e:
        return error_response(str(e), 400)
    except Exception:
        current_app.logger.exception("[Stock Management] Operation %s could not start", operation)
        return error_response("Failed to load products", 500)

    return success_response({"operation": operation, "stats": stats.to_dict()})


@stock_bp.post("/repair")
def repair_stock_route():
    """
    Repair stock with an explicit strategy.

    "replay-from-zero" rebuilds snapshots from the movement log (canonical);
    "trust-current-as-initial" adds non-initial movements to stock_qty.
    """
    payload = request.get_json(silent=True) or {}
    strategy = payload.get("strategy")
    if not strategy:
        return error_response("Missing required field: strategy", 400)

    try:
        shop_id = _optional_shop_id(payload)
        stats = reconciliation_service.repair_stock(strategy, shop_id=shop_id)
    except ValidationError as e:
        return error_response(str(e), 400)
    except Exception:
        current_app.logger.exception("[Stock Repair] Strategy %s could not start", strategy)
        return error_response("Failed to load products", 500)

    return success_response({"strategy": strategy, "stats": stats.to_dict()})


@stock_bp.get("/backfill")
def describe_backfill_route():
    return success_response({
        "message": "Send POST request to backfill stock movements for all completed transactions",
        "endpoint": "/api/stock/backfill",
        "method": "POST",
    })


@stock_bp.post("/backfill")
def backfill_stock_route():
    """Replay completed transactions that have no sale movements yet."""
    payload = request.get_json(silent=True) or {}
    try:
        shop_id = _optional_shop_id(payload)
        results = checkout_service.backfill_stock_movements(shop_id=shop_id)
    except ValidationError as e:
        return error_response(str(e), 400)
    except Exception:
        current_app.logger.exception("Backfill could not load transactions")
        return error_response("Failed to load transactions", 500)

    return success_response({
        "message": "Stock movements backfill completed",
        "results": results.to_dict(),
    })


@stock_bp.get("/products/<int:product_id>")
def product_ledger_route(product_id: int):
    """
    Inspect one product's ledger.

    consistent is true when every snapshot follows the progression from 0 and
    stock_qty equals the last stock_after.
    """
    try:
        product = get_product(product_id)
        movements = fetch_product_movements(product_id)
    except NotFoundError as e:
        return error_response(str(e), 404)
    except Exception:
        current_app.logger.exception("Failed to load ledger for product %s", product_id)
        return error_response("Internal server error", 500)

    breaks = find_progression_breaks(movements)
    ledger_stock = movements[-1].stock_after if movements else 0
    non_initial = [m for m in movements if not is_initial_movement(m)]

    return success_response({
        "product": product.to_dict(),
        "movements": [m.to_dict() for m in movements],
        "stats": compute_product_stats(product, non_initial).to_dict(),
        "ledger_stock": ledger_stock,
        "breaks": breaks,
        "consistent": not breaks and ledger_stock == product.stock_qty,
    })
