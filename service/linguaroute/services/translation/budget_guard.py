"""Daily spend ceiling for provider calls."""

import logging
import threading
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from linguaroute.core.exceptions import BudgetExceededError
from linguaroute.metrics.translation_metrics import (
    budget_rejections_total,
    budget_spend_usd,
)
from linguaroute.models.translation import BudgetState

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BudgetGuard:
    """Tracks cumulative spend against a daily ceiling.

    The check and the commit happen under one lock, so concurrent callers can
    never push spend past the ceiling. A rejected charge leaves spend unchanged.
    """

    def __init__(
        self,
        daily_budget_usd: float,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if daily_budget_usd < 0:
            raise ValueError("daily_budget_usd must be non-negative")
        self._ceiling = Decimal(str(daily_budget_usd))
        self._spent = Decimal("0")
        self._clock = clock or _utc_now
        self._window = self._today()
        self._lock = threading.Lock()

    def _today(self) -> date:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def _roll_window(self) -> None:
        # Caller holds the lock
        today = self._today()
        if today != self._window:
            logger.info(
                f"Budget window rolled over from {self._window} to {today} "
                f"(previous spend {float(self._spent):.6f} USD)"
            )
            self._window = today
            self._spent = Decimal("0")

    def charge(self, amount_usd: float) -> float:
        """Record a charge and return the new cumulative spend.

        Args:
            amount_usd: Cost of the successful provider call

        Returns:
            Cumulative spend in the current window after this charge

        Raises:
            ValueError: If amount_usd is negative
            BudgetExceededError: If the charge would exceed the ceiling
        """
        amount = Decimal(str(amount_usd))
        if amount < 0:
            raise ValueError(f"Charge amount must be non-negative, got {amount_usd}")

        with self._lock:
            self._roll_window()
            new_total = self._spent + amount
            if new_total > self._ceiling:
                remaining = float(self._ceiling - self._spent)
                budget_rejections_total.inc()
                logger.warning(
                    f"Budget charge of {amount_usd:.6f} USD rejected "
                    f"({remaining:.6f} USD remaining)"
                )
                raise BudgetExceededError(
                    remaining_usd=remaining, requested_usd=float(amount)
                )
            self._spent = new_total
            spent = float(self._spent)

        budget_spend_usd.set(spent)
        return spent

    def reset(self) -> None:
        with self._lock:
            self._spent = Decimal("0")
            self._window = self._today()
        budget_spend_usd.set(0)

    @property
    def spent_usd(self) -> float:
        with self._lock:
            self._roll_window()
            return float(self._spent)

    @property
    def remaining_usd(self) -> float:
        with self._lock:
            self._roll_window()
            return float(self._ceiling - self._spent)

    def snapshot(self) -> BudgetState:
        with self._lock:
            self._roll_window()
            return BudgetState(
                spent_usd=float(self._spent),
                daily_budget_usd=float(self._ceiling),
                window=self._window,
            )
