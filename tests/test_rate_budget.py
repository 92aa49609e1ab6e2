"""Tests for RateBudget and run estimates."""

import asyncio

import pytest

from viralyze.config import RunConfig
from viralyze.errors import CostCeilingExceededError
from viralyze.services.rate_budget import RateBudget, estimate_run


def _budget(clock, **kwargs) -> RateBudget:
    return RateBudget(clock=clock, sleep=clock.sleep, **kwargs)


class TestWindow:
    @pytest.mark.asyncio
    async def test_forty_requests_are_instant(self, clock) -> None:
        budget = _budget(clock, max_requests=40)
        for _ in range(40):
            waited = await budget.reserve(estimated_tokens=100)
            assert waited == 0.0
        assert clock.sleeps == []
        assert budget.requests_in_window == 40

    @pytest.mark.asyncio
    async def test_forty_first_waits_for_window_boundary(self, clock) -> None:
        budget = _budget(clock, max_requests=40, window_seconds=60.0)
        start = clock.now
        for _ in range(40):
            await budget.reserve(100)
        clock.now += 12.5  # work happens between calls

        waited = await budget.reserve(100)

        assert waited == pytest.approx(47.5)
        assert clock.now == pytest.approx(start + 60.0)
        assert budget.requests_in_window == 1
        assert budget.tokens_in_window == 100
        assert budget.pause_count == 1

    def test_try_reserve_books_nothing_when_full(self, clock) -> None:
        budget = _budget(clock, max_requests=2)
        assert budget.try_reserve(10, 0.01) == 0.0
        assert budget.try_reserve(10, 0.01) == 0.0

        wait = budget.try_reserve(10, 0.01)

        assert wait == pytest.approx(60.0)
        assert budget.requests_in_window == 2
        assert budget.cumulative_cost == pytest.approx(0.02)

    def test_token_limit(self, clock) -> None:
        budget = _budget(clock, max_tokens=1000)
        assert budget.try_reserve(600) == 0.0
        assert budget.try_reserve(600) > 0
        assert budget.tokens_in_window == 600

    def test_oversized_call_fits_empty_window(self, clock) -> None:
        budget = _budget(clock, max_tokens=1000)
        assert budget.try_reserve(5000) == 0.0

    def test_elapsed_window_resets(self, clock) -> None:
        budget = _budget(clock, max_requests=1)
        budget.try_reserve(10)
        clock.now += 61
        assert budget.try_reserve(10) == 0.0
        assert budget.requests_in_window == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_window(self, clock) -> None:
        budget = _budget(clock, max_requests=5)
        await asyncio.gather(*(budget.reserve(10) for _ in range(8)))
        # five in the first window, three in the next
        assert budget.requests_in_window == 3
        assert len(clock.sleeps) == 1


class TestMarkExhausted:
    def test_fills_window_and_counts_pause(self, clock) -> None:
        budget = _budget(clock, max_requests=40)
        budget.try_reserve(10)
        budget.mark_exhausted()
        assert budget.requests_in_window == 40
        assert budget.pause_count == 1
        assert budget.try_reserve(10) > 0


class TestCostCeiling:
    @pytest.mark.asyncio
    async def test_two_hundred_first_call_is_fatal(self, clock) -> None:
        budget = _budget(clock, max_requests=1000, cost_ceiling=10.0)
        for _ in range(200):
            await budget.reserve(10, 0.05)

        with pytest.raises(CostCeilingExceededError) as exc_info:
            await budget.reserve(10, 0.05)

        assert exc_info.value.cumulative_cost >= 10.0
        assert budget.cumulative_cost == pytest.approx(10.0)
        assert budget.requests_in_window == 200

    def test_checked_before_waiting(self, clock) -> None:
        budget = _budget(clock, max_requests=1, cost_ceiling=0.1)
        budget.try_reserve(10, 0.1)
        with pytest.raises(CostCeilingExceededError):
            budget.try_reserve(10, 0.05)

    def test_exact_ceiling_allowed(self, clock) -> None:
        budget = _budget(clock, cost_ceiling=0.3)
        for _ in range(3):
            assert budget.try_reserve(10, 0.1) == 0.0
        assert budget.cumulative_cost == pytest.approx(0.3)


class TestEstimates:
    def test_estimate_cost(self, clock) -> None:
        budget = _budget(clock)
        # 1500 in @ 0.003 + 1000 out @ 0.015
        assert budget.estimate_cost(1500, 1000) == pytest.approx(0.0195)

    def test_estimate_run(self) -> None:
        config = RunConfig(max_output_tokens=1000, inter_item_delay_seconds=1.5)
        estimate = estimate_run(100, config)
        assert estimate.items == 100
        assert estimate.estimated_cost == pytest.approx(1.95)
        # 3 windows of 60s + 100 * 1.5s
        assert estimate.estimated_minutes == pytest.approx(5.5)
        assert estimate.duration_label == "6 minutes"

    def test_estimate_run_empty(self) -> None:
        estimate = estimate_run(0, RunConfig())
        assert estimate.estimated_cost == 0
        assert estimate.estimated_minutes == 0
