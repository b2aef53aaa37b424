# Overview: Pytest coverage for the movement store data access layer.

import pytest
from stockledger.extensions import db
from stockledger.models import StockMovement
from stockledger.validation import ValidationError
from stockledger.services import movement_store
from stockledger.services.movement_store import (
    DuplicateMovementError,
    NotFoundError,
    StoreError,
)


class TestProductAccess:

    def test_fetch_all_products_ordered_and_scoped(self, db_session, shop, other_shop, make_product):
        b = make_product(name="B")
        a = make_product(name="A")
        foreign = make_product(name="Foreign", shop_id=other_shop.id)

        assert [p.id for p in movement_store.fetch_all_products()] == [b.id, a.id, foreign.id]
        assert [p.id for p in movement_store.fetch_all_products(shop.id)] == [b.id, a.id]

    def test_get_product_missing(self, db_session):
        with pytest.raises(NotFoundError):
            movement_store.get_product(99999)

    def test_get_product_with_lock(self, db_session, make_product):
        product = make_product(stock_qty=4)
        assert movement_store.get_product(product.id, lock=True).stock_qty == 4

    def test_update_product_stock_clamps(self, db_session, make_product):
        product = make_product(stock_qty=4)
        assert movement_store.update_product_stock(product.id, -7) == 0
        db_session.commit()
        assert db_session.get(type(product), product.id).stock_qty == 0

    def test_update_product_stock_bumps_version(self, db_session, make_product):
        product = make_product(stock_qty=4)
        version = product.version_id
        movement_store.update_product_stock(product.id, 9)
        db_session.commit()
        assert product.version_id == version + 1


class TestMovementQueries:

    def test_movements_in_chronological_order(self, db_session, make_product, add_movement):
        product = make_product()
        late = add_movement(product, -1, minutes=30)
        early = add_movement(product, 5, minutes=1)
        tie_a = add_movement(product, 2, minutes=10)
        tie_b = add_movement(product, 3, minutes=10)

        ids = [m.id for m in movement_store.fetch_product_movements(product.id)]
        assert ids == [early.id, tie_a.id, tie_b.id, late.id]

        ids_desc = [m.id for m in movement_store.fetch_product_movements(product.id, ascending=False)]
        assert ids_desc == list(reversed(ids))

    def test_no_movements_is_empty_list(self, db_session, make_product):
        product = make_product()
        assert movement_store.fetch_product_movements(product.id) == []

    def test_exclude_initial_drops_both_initial_rules(self, db_session, make_product, add_movement):
        product = make_product()
        add_movement(product, 50, type="initial", minutes=0)
        add_movement(product, 5, type="adjustment", reference_type="initial stock", minutes=1)
        sale = add_movement(product, -2, type="sale", reference_type="transaction", reference_id="1", minutes=2)
        manual = add_movement(product, 1, type="adjustment", minutes=3)

        remaining = movement_store.fetch_product_movements(product.id, exclude_initial=True)
        assert [m.id for m in remaining] == [sale.id, manual.id]

    def test_fetch_initial_stock_movement(self, db_session, make_product, add_movement):
        product = make_product()
        assert movement_store.fetch_initial_stock_movement(product.id) is None

        initial = add_movement(product, 50, type="initial", reference_type="initial stock", minutes=0)
        assert movement_store.fetch_initial_stock_movement(product.id).id == initial.id


class TestBatchUpdateMovements:

    def test_updates_rows_in_chunks(self, db_session, make_product, add_movement):
        product = make_product()
        movements = [add_movement(product, 1, minutes=i) for i in range(5)]
        updates = [
            {"id": m.id, "stock_before": i, "stock_after": i + 1}
            for i, m in enumerate(movements)
        ]

        result = movement_store.batch_update_movements(updates, batch_size=2)
        db_session.commit()

        assert result.updated_count == 5
        assert result.errors == []
        assert [(m.stock_before, m.stock_after) for m in movements] == [(i, i + 1) for i in range(5)]

    def test_failing_row_does_not_stop_the_rest(self, db_session, make_product, add_movement):
        product = make_product()
        good = add_movement(product, 3, minutes=1)
        updates = [
            {"id": 424242, "stock_before": 0, "stock_after": 1},
            {"id": good.id, "stock_before": 0, "stock_after": 3},
        ]

        result = movement_store.batch_update_movements(updates)
        db_session.commit()

        assert result.updated_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].movement_id == 424242
        assert good.stock_after == 3


class TestInsertMovement:

    def test_rejects_invalid_fields_with_all_messages(self, db_session):
        with pytest.raises(ValidationError) as exc:
            movement_store.insert_movement(type="sale")
        message = str(exc.value)
        assert "product_id is required" in message
        assert "shop_id is required" in message
        assert "quantity is required" in message

    def test_duplicate_transaction_line_rejected(self, db_session, make_product):
        product = make_product()
        fields = dict(
            product_id=product.id,
            shop_id=product.shop_id,
            type="sale",
            quantity=-1,
            reference_type="transaction",
            reference_id="77",
            reference_line=1,
        )
        movement_store.insert_movement(**fields)
        db_session.commit()

        with pytest.raises(DuplicateMovementError):
            movement_store.insert_movement(**fields)
        db_session.rollback()

        assert db_session.query(StockMovement).count() == 1

    def test_duplicate_error_is_a_store_error(self):
        assert issubclass(DuplicateMovementError, StoreError)


class TestUpsertInitialStock:

    def test_creates_then_updates(self, db_session, make_product):
        product = make_product(stock_qty=50)

        assert movement_store.upsert_initial_stock(product, 50) == "created"
        db_session.commit()
        movement = movement_store.fetch_initial_stock_movement(product.id)
        assert movement.created_at == product.created_at
        assert movement.reference_type == "initial stock"

        assert movement_store.upsert_initial_stock(product, 60) == "updated"
        db_session.commit()
        assert movement.quantity == 60
        assert movement.stock_before == 0
        assert movement.stock_after == 60
        assert db_session.query(StockMovement).count() == 1


class TestTransactions:

    def test_has_transaction_movement(self, db_session, make_product, add_movement):
        product = make_product()
        other = make_product(name="Other")
        add_movement(product, -1, type="sale", reference_type="transaction", reference_id="5", reference_line=1)

        assert movement_store.has_transaction_movement(5)
        assert movement_store.has_transaction_movement("5", product.id)
        assert not movement_store.has_transaction_movement(5, other.id)
        assert not movement_store.has_transaction_movement(6)

    def test_has_transaction_movement_per_line(self, db_session, make_product, add_movement):
        product = make_product()
        add_movement(product, -1, type="sale", reference_type="transaction", reference_id="8", reference_line=1)

        assert movement_store.has_transaction_movement(8, product.id, 1)
        assert not movement_store.has_transaction_movement(8, product.id, 2)

    def test_line_less_movement_covers_every_line(self, db_session, make_product, add_movement):
        product = make_product()
        add_movement(product, -1, type="sale", reference_type="transaction", reference_id="9")

        assert movement_store.has_transaction_movement(9, product.id, 3)

    def test_fetch_completed_transactions_oldest_first(self, db_session, add_transaction):
        newer = add_transaction([{"product_id": 1, "quantity": 1}], minutes=20)
        older = add_transaction([{"product_id": 1, "quantity": 1}], minutes=5)
        add_transaction([{"product_id": 1, "quantity": 1}], status="voided", minutes=1)

        assert [t.id for t in movement_store.fetch_completed_transactions()] == [older.id, newer.id]

    def test_get_transaction_missing(self, db_session):
        with pytest.raises(NotFoundError):
            movement_store.get_transaction(31337)
