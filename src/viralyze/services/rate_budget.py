"""Request/token rate window and cumulative cost governor."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel

from viralyze.config import RunConfig
from viralyze.errors import CostCeilingExceededError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]

# Costs accumulate at micro-dollar precision.
_COST_PRECISION = 6
_COST_EPSILON = 1e-9


class RateBudget:
    """Fixed-window request/token limiter plus a hard spend ceiling.

    One instance is shared by everything that issues inference calls during a
    run. Every reservation is booked before the call goes out, so a crash
    mid-call can over-count usage but never under-count it.
    """

    def __init__(
        self,
        max_requests: int = 40,
        max_tokens: int = 30_000,
        window_seconds: float = 60.0,
        cost_ceiling: float = 10.0,
        input_cost_per_1k: float = 0.003,
        output_cost_per_1k: float = 0.015,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.max_requests = max_requests
        self.max_tokens = max_tokens
        self.window_seconds = window_seconds
        self.cost_ceiling = cost_ceiling
        self.input_cost_per_1k = input_cost_per_1k
        self.output_cost_per_1k = output_cost_per_1k

        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()

        self._window_start = self._clock()
        self._requests_in_window = 0
        self._tokens_in_window = 0
        self._cumulative_cost = 0.0
        self._pause_count = 0

    @classmethod
    def from_config(
        cls,
        config: RunConfig,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> RateBudget:
        return cls(
            max_requests=config.requests_per_window,
            max_tokens=config.tokens_per_window,
            window_seconds=config.window_length_seconds,
            cost_ceiling=config.cost_ceiling,
            input_cost_per_1k=config.input_cost_per_1k,
            output_cost_per_1k=config.output_cost_per_1k,
            clock=clock,
            sleep=sleep,
        )

    @property
    def window_start(self) -> float:
        return self._window_start

    @property
    def requests_in_window(self) -> int:
        return self._requests_in_window

    @property
    def tokens_in_window(self) -> int:
        return self._tokens_in_window

    @property
    def cumulative_cost(self) -> float:
        return self._cumulative_cost

    @property
    def pause_count(self) -> int:
        """Window waits plus provider-reported rate limits."""
        return self._pause_count

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Price a call from per-1k token rates."""
        cost = (input_tokens / 1000) * self.input_cost_per_1k + (
            output_tokens / 1000
        ) * self.output_cost_per_1k
        return round(cost, _COST_PRECISION)

    def _roll_window(self, now: float) -> None:
        if now >= self._window_start + self.window_seconds:
            self._window_start = now
            self._requests_in_window = 0
            self._tokens_in_window = 0

    def _check_cost(self, cost: float) -> float:
        projected = round(self._cumulative_cost + cost, _COST_PRECISION)
        if projected > self.cost_ceiling + _COST_EPSILON:
            raise CostCeilingExceededError(
                cumulative_cost=self._cumulative_cost,
                ceiling=self.cost_ceiling,
                attempted_cost=cost,
            )
        return projected

    def try_reserve(self, estimated_tokens: int, estimated_cost: float = 0.0) -> float:
        """Book one call if it fits the current window.

        Returns:
            0.0 when the call was booked, otherwise the seconds to wait until
            the window boundary (nothing is booked in that case).

        Raises:
            CostCeilingExceededError: If the call would breach the spend ceiling
        """
        projected_cost = self._check_cost(estimated_cost)

        now = self._clock()
        self._roll_window(now)

        over_requests = self._requests_in_window + 1 > self.max_requests
        over_tokens = self._tokens_in_window + estimated_tokens > self.max_tokens
        # A single call larger than the whole token window is let through on an
        # empty window, otherwise it could never be booked.
        if self._requests_in_window == 0 and not over_requests:
            over_tokens = False

        if over_requests or over_tokens:
            return max(self._window_start + self.window_seconds - now, 0.0)

        self._requests_in_window += 1
        self._tokens_in_window += estimated_tokens
        self._cumulative_cost = projected_cost
        return 0.0

    async def reserve(self, estimated_tokens: int, estimated_cost: float = 0.0) -> float:
        """Book one call, sleeping until the window boundary if it is full.

        Returns:
            Total seconds spent waiting for capacity.

        Raises:
            CostCeilingExceededError: If the call would breach the spend ceiling
        """
        waited = 0.0
        async with self._lock:
            while True:
                wait = self.try_reserve(estimated_tokens, estimated_cost)
                if wait <= 0:
                    return waited
                self._pause_count += 1
                logger.info(
                    "Rate window full (%d/%d requests, %d/%d tokens), waiting %.1fs",
                    self._requests_in_window,
                    self.max_requests,
                    self._tokens_in_window,
                    self.max_tokens,
                    wait,
                )
                await self._sleep(wait)
                waited += wait

    def mark_exhausted(self) -> None:
        """Provider throttled us: treat the current window as full."""
        self._requests_in_window = self.max_requests
        self._pause_count += 1
        logger.warning("Provider rate limit hit, marking window exhausted")


class RunEstimate(BaseModel):
    """Up-front cost and duration estimate for a run."""

    items: int
    estimated_cost: float
    estimated_minutes: float

    @property
    def duration_label(self) -> str:
        if self.estimated_minutes < 60:
            return f"{self.estimated_minutes:.0f} minutes"
        return f"{self.estimated_minutes / 60:.1f} hours"


def estimate_run(
    item_count: int,
    config: RunConfig,
    avg_input_tokens: int = 1500,
) -> RunEstimate:
    """Estimate spend and wall time for ``item_count`` items.

    Time is bounded below by the request window and padded with the
    inter-item pause.
    """
    budget = RateBudget.from_config(config)
    per_item = budget.estimate_cost(avg_input_tokens, config.max_output_tokens)
    windows = -(-item_count // config.requests_per_window) if item_count else 0
    minutes = (windows * config.window_length_seconds) / 60 + (
        item_count * config.inter_item_delay_seconds
    ) / 60
    return RunEstimate(
        items=item_count,
        estimated_cost=round(per_item * item_count, 4),
        estimated_minutes=round(minutes, 1),
    )
