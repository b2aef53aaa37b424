# Overview: Checkout API; records completed transactions and reports their stock movements.

from flask import Blueprint, request, current_app

from ..api_response import success_response, error_response
from ..models import Transaction
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    validate_payload,
    enforce_rules_checkout,
)
from ..services import checkout_service
from ..services.movement_store import (
    NotFoundError,
    fetch_transaction_movements,
    get_transaction,
)


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

CHECKOUT_POLICY = ModelValidationPolicy(
    writable_fields={"shop_id", "user_id", "customer_id", "items"},
    required_on_create={"shop_id", "items"},
)


@transactions_bp.post("")
def checkout_route():
    """
    Commit a cart as a completed transaction.

    Request body:
    {
        "shop_id": int,
        "user_id": int (optional),
        "customer_id": int (optional),
        "items": [{"product_id": int, "quantity": int, "price": int (cents)}]
    }

    Returns:
        201: transaction recorded; "stock" reports per-line movement emission
        400: invalid payload
        404: unknown shop
        500: the transaction could not be written
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=Transaction,
            payload=payload,
            policy=CHECKOUT_POLICY,
            partial=False,
        )
        enforce_rules_checkout(patch)
    except ValidationError as e:
        return error_response(str(e), 400)

    try:
        transaction, emission = checkout_service.create_checkout(
            patch["shop_id"],
            patch["items"],
            user_id=patch.get("user_id"),
            customer_id=patch.get("customer_id"),
        )
    except ValidationError as e:
        return error_response(str(e), 400)
    except NotFoundError as e:
        return error_response(str(e), 404)
    except Exception:
        current_app.logger.exception("Failed to record transaction")
        return error_response("Failed to record transaction", 500)

    return success_response({
        "transaction": transaction.to_dict(),
        "stock": emission.to_dict(),
    }, 201)


@transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        transaction = get_transaction(transaction_id)
        movements = fetch_transaction_movements(transaction_id)
    except NotFoundError as e:
        return error_response(str(e), 404)
    except Exception:
        current_app.logger.exception("Failed to load transaction %s", transaction_id)
        return error_response("Internal server error", 500)

    return success_response({
        "transaction": transaction.to_dict(),
        "movements": [m.to_dict() for m in movements],
    })
