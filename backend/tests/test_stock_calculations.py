# Overview: Pytest coverage for the pure stock ledger arithmetic.

"""
Progression Calculator Tests

Pure functions only; no app or database fixtures are needed.
"""

import random
from datetime import datetime, timedelta

import pytest
from stockledger.services.stock_calculations import (
    RepairStrategy,
    clamp_stock,
    compute_final_stock,
    compute_product_stats,
    compute_progression,
    find_progression_breaks,
    is_initial_movement,
    sort_by_date,
    stock_after_sale,
    validate_movement,
)


T0 = datetime(2026, 1, 1, 12, 0, 0)


def _movements(quantities):
    return [{"id": i + 1, "quantity": q} for i, q in enumerate(quantities)]


class TestComputeProgression:
    """compute_progression folds quantities into before/after snapshots."""

    def test_empty_input(self):
        assert compute_progression([]) == []

    def test_starts_from_zero_and_chains(self):
        steps = compute_progression(_movements([50, -5, 10]))
        assert [(s.stock_before, s.stock_after) for s in steps] == [(0, 50), (50, 45), (45, 55)]
        assert [s.movement_id for s in steps] == [1, 2, 3]

    @pytest.mark.parametrize("seed", range(5))
    def test_invariant_holds_for_arbitrary_quantities(self, seed):
        rng = random.Random(seed)
        movements = _movements([rng.randint(-100, 100) for _ in range(40)])
        steps = compute_progression(movements)

        assert steps[0].stock_before == 0
        for movement, step in zip(movements, steps):
            assert step.stock_after == step.stock_before + movement["quantity"]
        for prev, nxt in zip(steps, steps[1:]):
            assert nxt.stock_before == prev.stock_after

    def test_running_total_is_not_clamped(self):
        steps = compute_progression(_movements([3, -5, 4]))
        assert [(s.stock_before, s.stock_after) for s in steps] == [(0, 3), (3, -2), (-2, 2)]

    def test_missing_quantity_counts_as_zero(self):
        steps = compute_progression([{"id": 1, "quantity": 7}, {"id": 2, "quantity": None}])
        assert steps[1].stock_before == 7
        assert steps[1].stock_after == 7

    def test_input_order_is_trusted(self):
        movements = [
            {"id": 2, "quantity": -1, "created_at": T0 + timedelta(minutes=5)},
            {"id": 1, "quantity": 10, "created_at": T0},
        ]
        steps = compute_progression(movements)
        assert [s.movement_id for s in steps] == [2, 1]
        assert steps[0].stock_after == -1

    def test_to_update_shape(self):
        step = compute_progression(_movements([4]))[0]
        assert step.to_update() == {"id": 1, "stock_before": 0, "stock_after": 4}


class TestComputeFinalStock:

    def test_adds_movements_to_initial(self):
        assert compute_final_stock(10, _movements([-3])) == 7

    def test_never_negative(self):
        assert compute_final_stock(1, _movements([-4])) == 0
        assert compute_final_stock(-50, _movements([-1000])) == 0

    def test_same_inputs_same_output(self):
        movements = _movements([5, -2, 8])
        assert compute_final_stock(3, movements) == compute_final_stock(3, movements) == 14

    def test_none_initial_is_zero(self):
        assert compute_final_stock(None, _movements([2])) == 2


class TestSortByDate:

    def test_ascending_and_descending(self):
        movements = [
            {"id": 1, "created_at": T0 + timedelta(minutes=2)},
            {"id": 2, "created_at": T0},
            {"id": 3, "created_at": T0 + timedelta(minutes=1)},
        ]
        assert [m["id"] for m in sort_by_date(movements)] == [2, 3, 1]
        assert [m["id"] for m in sort_by_date(movements, ascending=False)] == [1, 3, 2]

    def test_ties_keep_input_order_both_directions(self):
        movements = [{"id": i, "created_at": T0} for i in (5, 3, 9)]
        assert [m["id"] for m in sort_by_date(movements)] == [5, 3, 9]
        assert [m["id"] for m in sort_by_date(movements, ascending=False)] == [5, 3, 9]

    def test_returns_new_list(self):
        movements = [{"id": 1, "created_at": T0 + timedelta(seconds=1)}, {"id": 2, "created_at": T0}]
        result = sort_by_date(movements)
        assert result is not movements
        assert [m["id"] for m in movements] == [1, 2]

    def test_iso_strings_are_accepted(self):
        movements = [
            {"id": 1, "created_at": "2026-01-01T12:00:01.500000Z"},
            {"id": 2, "created_at": "2026-01-01T12:00:01.250000Z"},
        ]
        assert [m["id"] for m in sort_by_date(movements)] == [2, 1]


class TestMovementHelpers:

    def test_is_initial_movement_either_rule(self):
        assert is_initial_movement({"type": "initial"})
        assert is_initial_movement({"type": "adjustment", "reference_type": "initial stock"})
        assert not is_initial_movement({"type": "sale", "reference_type": "transaction"})

    def test_validate_movement_lists_every_problem(self):
        errors = validate_movement({})
        assert errors == [
            "product_id is required",
            "shop_id is required",
            "type is required",
            "quantity is required",
        ]

    def test_validate_movement_rejects_unknown_type(self):
        errors = validate_movement({"product_id": 1, "shop_id": 1, "type": "teleport", "quantity": 1})
        assert len(errors) == 1
        assert errors[0].startswith("type must be one of")

    def test_validate_movement_accepts_zero_quantity(self):
        assert validate_movement({"product_id": 1, "shop_id": 1, "type": "opname", "quantity": 0}) == []

    def test_compute_product_stats(self):
        product = {"id": 7, "name": "Tea", "stock_qty": 10}
        result = compute_product_stats(product, _movements([-3, -2]))
        assert result.to_dict() == {
            "productId": 7,
            "productName": "Tea",
            "initialStock": 10,
            "totalMovements": -5,
            "finalStock": 5,
            "movementsCount": 2,
        }

    def test_find_progression_breaks(self):
        movements = [
            {"id": 1, "quantity": 50, "stock_before": 0, "stock_after": 50},
            {"id": 2, "quantity": -5, "stock_before": 40, "stock_after": 35},
            {"id": 3, "quantity": -5, "stock_before": 45, "stock_after": 40},
        ]
        breaks = find_progression_breaks(movements)
        assert [b["movement_id"] for b in breaks] == [2]
        assert breaks[0]["expected_before"] == 50
        assert breaks[0]["expected_after"] == 45

    def test_consistent_ledger_has_no_breaks(self):
        steps = compute_progression(_movements([5, -1, 3]))
        movements = [
            {"id": s.movement_id, "quantity": q, "stock_before": s.stock_before, "stock_after": s.stock_after}
            for s, q in zip(steps, [5, -1, 3])
        ]
        assert find_progression_breaks(movements) == []


class TestStockPolicy:

    def test_clamp_stock(self):
        assert clamp_stock(-3) == 0
        assert clamp_stock(0) == 0
        assert clamp_stock(12) == 12

    def test_oversold_sale_floors_at_zero(self):
        assert stock_after_sale(1, 4) == 0
        assert stock_after_sale(5, 2) == 3

    def test_repair_strategy_values(self):
        assert RepairStrategy("replay-from-zero") is RepairStrategy.REPLAY_FROM_ZERO
        assert RepairStrategy("trust-current-as-initial") is RepairStrategy.TRUST_CURRENT_AS_INITIAL
