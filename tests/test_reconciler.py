from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from folio.models import TransactionType
from folio.services.reconciler import reconcile_position, sort_transactions

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_tx(
    tx_id: int,
    tx_type: TransactionType | str,
    quantity: float,
    price: float,
    day: int | None = None,
    created_offset: int = 0,
):
    day = tx_id if day is None else day
    return SimpleNamespace(
        id=tx_id,
        type=tx_type,
        quantity=quantity,
        price_per_unit=price,
        date=BASE + timedelta(days=day),
        created_at=BASE + timedelta(days=day, seconds=created_offset),
    )


def test_buys_blend_into_weighted_average() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.BUY, 10, 200),
        ]
    )
    assert state.quantity == pytest.approx(20)
    assert state.average_cost == pytest.approx(150)
    assert state.cost_basis == pytest.approx(3000)
    assert state.oversold is False


def test_partial_sell_keeps_average_cost_regardless_of_sale_price() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.BUY, 10, 200),
            make_tx(3, TransactionType.SELL, 5, 999),
        ]
    )
    assert state.quantity == pytest.approx(15)
    assert state.average_cost == pytest.approx(150)
    assert state.cost_basis == pytest.approx(2250)


def test_oversell_clamps_to_zero_and_holds_last_average() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.BUY, 10, 200),
            make_tx(3, TransactionType.SELL, 5, 999),
            make_tx(4, TransactionType.SELL, 100, 50),
        ]
    )
    assert state.quantity == 0.0
    assert state.average_cost == pytest.approx(150)
    assert state.cost_basis == 0.0
    assert state.oversold is True


def test_exact_sell_out_is_not_an_anomaly() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 3, 40),
            make_tx(2, TransactionType.SELL, 3, 55),
        ]
    )
    assert state.quantity == 0.0
    assert state.average_cost == pytest.approx(40)
    assert state.oversold is False


def test_buy_after_sell_out_starts_a_fresh_average() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 3, 40),
            make_tx(2, TransactionType.SELL, 3, 55),
            make_tx(3, TransactionType.BUY, 2, 70),
        ]
    )
    assert state.quantity == pytest.approx(2)
    assert state.average_cost == pytest.approx(70)


def test_buy_after_oversell_starts_from_zero_cost() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 1, 10),
            make_tx(2, TransactionType.SELL, 5, 10),
            make_tx(3, TransactionType.BUY, 4, 25),
        ]
    )
    assert state.quantity == pytest.approx(4)
    assert state.average_cost == pytest.approx(25)
    assert state.oversold is True


def test_empty_history_uses_previous_average_cost() -> None:
    assert reconcile_position([]).quantity == 0.0
    assert reconcile_position([]).average_cost == 0.0
    assert reconcile_position([], previous_average_cost=12.5).average_cost == 12.5


def test_sell_only_history_clamps_and_keeps_previous_average() -> None:
    state = reconcile_position(
        [make_tx(1, TransactionType.SELL, 2, 10)], previous_average_cost=33.0
    )
    assert state.quantity == 0.0
    assert state.average_cost == 33.0
    assert state.oversold is True


def test_replay_order_ignores_input_order() -> None:
    txs = [
        make_tx(1, TransactionType.BUY, 10, 100),
        make_tx(2, TransactionType.SELL, 10, 120),
        make_tx(3, TransactionType.BUY, 4, 50),
    ]
    shuffled = [txs[2], txs[0], txs[1]]

    assert reconcile_position(shuffled) == reconcile_position(txs)
    assert reconcile_position(shuffled).quantity == pytest.approx(4)
    assert reconcile_position(shuffled).average_cost == pytest.approx(50)


def test_same_day_trades_replay_in_creation_order() -> None:
    sell_first = make_tx(1, TransactionType.SELL, 5, 10, day=3, created_offset=1)
    buy_later = make_tx(2, TransactionType.BUY, 5, 10, day=3, created_offset=2)

    assert [tx.id for tx in sort_transactions([buy_later, sell_first])] == [1, 2]
    state = reconcile_position([buy_later, sell_first])
    assert state.oversold is True
    assert state.quantity == pytest.approx(5)


def test_backdated_trade_is_replayed_by_trade_date() -> None:
    recorded_first = make_tx(1, TransactionType.SELL, 2, 90, day=10, created_offset=0)
    backdated_buy = make_tx(2, TransactionType.BUY, 2, 80, day=5, created_offset=500_000)

    state = reconcile_position([recorded_first, backdated_buy])
    assert state.oversold is False
    assert state.quantity == 0.0
    assert state.average_cost == pytest.approx(80)


def test_sort_handles_naive_and_aware_datetimes() -> None:
    naive = SimpleNamespace(id=1, date=datetime(2026, 2, 15, 13, 15, 0), created_at=None)
    aware = SimpleNamespace(
        id=2, date=datetime(2026, 2, 15, 13, 14, 0, tzinfo=timezone.utc), created_at=None
    )
    assert [tx.id for tx in sort_transactions([naive, aware])] == [2, 1]


def test_string_types_match_case_insensitively_and_unknown_types_are_skipped() -> None:
    state = reconcile_position(
        [
            make_tx(1, "BUY", 4, 10),
            make_tx(2, "Sell", 1, 12),
            make_tx(3, "dividend", 100, 1),
        ]
    )
    assert state.quantity == pytest.approx(3)
    assert state.average_cost == pytest.approx(10)
    assert state.transaction_count == 3


def test_reconciliation_is_idempotent() -> None:
    txs = [
        make_tx(1, TransactionType.BUY, 1.5, 30_000),
        make_tx(2, TransactionType.BUY, 0.25, 42_000),
        make_tx(3, TransactionType.SELL, 0.75, 50_000),
    ]
    first = reconcile_position(txs)
    second = reconcile_position(txs)
    assert first == second


def test_negative_buy_quantity_propagates_without_raising() -> None:
    # Positive-quantity validation belongs to the input layer.
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.BUY, -4, 100),
        ]
    )
    assert state.quantity == pytest.approx(6)
    assert state.average_cost == pytest.approx(100)


def test_buy_that_cancels_quantity_does_not_divide_by_zero() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.BUY, -10, 300),
        ]
    )
    assert state.quantity == 0.0
    assert state.average_cost == pytest.approx(100)


def test_zero_price_buy_dilutes_average_cost() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.BUY, 10, 0),
        ]
    )
    assert state.quantity == pytest.approx(20)
    assert state.average_cost == pytest.approx(50)


def test_negative_sell_quantity_grows_position_at_current_average() -> None:
    state = reconcile_position(
        [
            make_tx(1, TransactionType.BUY, 10, 100),
            make_tx(2, TransactionType.SELL, -5, 10),
        ]
    )
    assert state.quantity == pytest.approx(15)
    assert state.average_cost == pytest.approx(100)


def _proportional_replay(txs) -> tuple[float, float]:
    """Literal running-cost-basis form: remove cost in proportion to units sold."""
    quantity = 0.0
    cost = 0.0
    for tx in sort_transactions(txs):
        if tx.type == TransactionType.BUY:
            cost += tx.quantity * tx.price_per_unit
            quantity += tx.quantity
        elif quantity == 0 or tx.quantity > quantity:
            quantity = 0.0
            cost = 0.0
        else:
            cost -= (tx.quantity / quantity) * cost
            quantity -= tx.quantity
    return quantity, cost


def test_held_average_matches_proportional_cost_removal() -> None:
    rng = random.Random(20240101)
    for _ in range(200):
        txs = []
        held = 0.0
        for tx_id in range(1, rng.randint(2, 12)):
            if held > 0.1 and rng.random() < 0.4:
                quantity = round(rng.uniform(0.1, held), 4)
                txs.append(make_tx(tx_id, TransactionType.SELL, quantity, rng.uniform(1, 500)))
                held -= quantity
            else:
                quantity = round(rng.uniform(0.1, 50), 4)
                txs.append(make_tx(tx_id, TransactionType.BUY, quantity, rng.uniform(1, 500)))
                held += quantity

        state = reconcile_position(txs)
        expected_quantity, expected_cost = _proportional_replay(txs)
        if expected_quantity <= 1e-9:
            assert state.quantity == 0.0
            continue
        assert state.quantity == pytest.approx(expected_quantity, abs=1e-6)
        assert state.cost_basis == pytest.approx(expected_cost, rel=1e-6, abs=1e-6)
        assert state.average_cost == pytest.approx(expected_cost / expected_quantity, rel=1e-6)
