"""Tests for the daily budget ceiling."""

import threading

import pytest
from linguaroute.core.exceptions import BudgetExceededError
from linguaroute.services.translation.budget_guard import BudgetGuard


@pytest.mark.unit
def test_charge_accumulates_spend():
    guard = BudgetGuard(1.0)

    assert guard.charge(0.25) == pytest.approx(0.25)
    assert guard.charge(0.25) == pytest.approx(0.5)
    assert guard.remaining_usd == pytest.approx(0.5)


@pytest.mark.unit
def test_charge_over_ceiling_is_rejected_and_spend_unchanged():
    guard = BudgetGuard(1.0)
    guard.charge(0.6)

    with pytest.raises(BudgetExceededError) as exc_info:
        guard.charge(0.5)

    assert exc_info.value.status_code == 402
    assert exc_info.value.error_code == "BUDGET_EXCEEDED"
    assert exc_info.value.remaining_usd == pytest.approx(0.4)
    assert exc_info.value.requested_usd == pytest.approx(0.5)
    assert guard.spent_usd == pytest.approx(0.6)


@pytest.mark.unit
def test_charge_exactly_reaching_ceiling_is_allowed():
    guard = BudgetGuard(0.3)
    guard.charge(0.1)
    guard.charge(0.2)

    assert guard.remaining_usd == pytest.approx(0.0)
    with pytest.raises(BudgetExceededError):
        guard.charge(0.000001)


@pytest.mark.unit
def test_zero_charge_always_allowed():
    guard = BudgetGuard(0.0)

    assert guard.charge(0) == 0.0


@pytest.mark.unit
def test_negative_charge_is_rejected():
    guard = BudgetGuard(1.0)

    with pytest.raises(ValueError):
        guard.charge(-0.1)


@pytest.mark.unit
def test_negative_ceiling_is_rejected():
    with pytest.raises(ValueError):
        BudgetGuard(-1)


@pytest.mark.unit
def test_spend_resets_when_day_rolls_over(clock):
    guard = BudgetGuard(1.0, clock=clock)
    guard.charge(0.9)

    clock.advance(days=1)

    assert guard.spent_usd == 0.0
    assert guard.charge(0.9) == pytest.approx(0.9)
    assert guard.snapshot().window == clock().date()


@pytest.mark.unit
def test_reset_clears_spend():
    guard = BudgetGuard(1.0)
    guard.charge(0.7)

    guard.reset()

    assert guard.spent_usd == 0.0
    assert guard.snapshot().remaining_usd == pytest.approx(1.0)


@pytest.mark.unit
def test_concurrent_charges_never_exceed_ceiling():
    guard = BudgetGuard(1.0)
    accepted = []
    rejected = []
    lock = threading.Lock()

    def worker():
        for _ in range(20):
            try:
                guard.charge(0.01)
            except BudgetExceededError:
                with lock:
                    rejected.append(1)
            else:
                with lock:
                    accepted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(accepted) == 100
    assert len(rejected) == 100
    assert guard.spent_usd == pytest.approx(1.0)
