"""Per-session turn, spend, and wall-clock caps."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from gym_agents.config import PricingConfig


def estimate_cost_cents(input_tokens: int, output_tokens: int, pricing: PricingConfig) -> float:
    """Billed cost of one model call in cents."""
    usd = (
        input_tokens / 1_000_000 * pricing.input_per_million
        + output_tokens / 1_000_000 * pricing.output_per_million
    )
    return usd * pricing.markup * 100


@dataclass
class BudgetGuard:
    """Counters owned by exactly one session. Monotonic until the session ends.

    check() is called at the top of every turn, before the model is consulted.
    The next turn is projected to cost as much as the most expensive turn so far;
    with nothing left to spend no turn is started at all.
    """

    max_turns: int
    max_cost_cents: float
    timeout_seconds: Optional[float] = None
    turns_used: int = 0
    cost_cents: float = 0.0
    clock: Callable[[], float] = time.monotonic
    _started_at: float = field(init=False, default=0.0)
    _max_turn_cost: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        self._started_at = self.clock()

    def record_turn(self, cost_cents: float) -> None:
        self.turns_used += 1
        self.cost_cents += max(cost_cents, 0.0)
        self._max_turn_cost = max(self._max_turn_cost, cost_cents)

    @property
    def elapsed_seconds(self) -> float:
        return self.clock() - self._started_at

    def check(self) -> Optional[str]:
        """Return the exhausted cap ("turns", "cost", "timeout") or None."""
        if self.turns_used >= self.max_turns:
            return "turns"
        projected = self.cost_cents + self._max_turn_cost
        if self.cost_cents >= self.max_cost_cents or projected > self.max_cost_cents:
            return "cost"
        if self.timeout_seconds is not None and self.elapsed_seconds >= self.timeout_seconds:
            return "timeout"
        return None
