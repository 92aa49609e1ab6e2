"""Bounded retry around a single inference call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from viralyze.config import RunConfig
from viralyze.errors import (
    PermanentFailureError,
    ProviderError,
    RetriesExhaustedError,
    TransientFailureError,
)
from viralyze.models.analysis import StructuredPayload
from viralyze.models.progress import RunState
from viralyze.services.interfaces import IInferenceClient
from viralyze.services.rate_budget import RateBudget
from viralyze.services.result_parser import ParseErrorKind, ResultParser, looks_like_refusal

logger = logging.getLogger(__name__)


@dataclass
class InferenceRequest:
    prompt: str
    model_id: str
    max_output_tokens: int
    estimated_tokens: int
    estimated_cost: float
    source_text: str = ""


@dataclass
class InvocationResult:
    payload: StructuredPayload
    raw_response: str
    attempts: int
    synthesized: bool = False


class RetryEngine:
    """Calls the inference client until it yields a usable payload.

    Transient failures (rate limits, 5xx, unstructured responses) are retried
    up to ``max_attempts`` total attempts. Permanent failures (refusals,
    invalid payloads, client errors) raise immediately. The first attempt is
    assumed to be already booked by the caller; every later attempt books
    again from the shared budget.
    """

    def __init__(
        self,
        client: IInferenceClient,
        budget: RateBudget,
        parser: ResultParser | None = None,
        max_attempts: int = 3,
        retry_delay_seconds: float = 3.0,
        rate_limit_retry_delay_seconds: float = 65.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.client = client
        self.budget = budget
        self.parser = parser or ResultParser()
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.rate_limit_retry_delay_seconds = rate_limit_retry_delay_seconds
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(
        cls,
        client: IInferenceClient,
        budget: RateBudget,
        config: RunConfig,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> RetryEngine:
        return cls(
            client=client,
            budget=budget,
            parser=ResultParser(min_content_chars=config.min_content_chars),
            max_attempts=config.max_retries,
            retry_delay_seconds=config.retry_delay_seconds,
            rate_limit_retry_delay_seconds=config.rate_limit_retry_delay_seconds,
            sleep=sleep,
        )

    async def invoke(
        self,
        request: InferenceRequest,
        on_phase: Callable[[RunState], None] | None = None,
    ) -> InvocationResult:
        """Run the request to a payload.

        ``on_phase`` is told when each attempt moves between calling the
        model and parsing its answer.

        Raises:
            PermanentFailureError: Retrying cannot help
            RetriesExhaustedError: Every attempt failed transiently
            CostCeilingExceededError: Booking a retry breached the ceiling
        """
        last_error: TransientFailureError | None = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                await self.budget.reserve(request.estimated_tokens, request.estimated_cost)

            if on_phase is not None:
                on_phase(RunState.INVOKING)
            try:
                raw = await self.client.complete(
                    request.prompt, request.model_id, request.max_output_tokens
                )
            except ProviderError as e:
                last_error = self._classify_provider_error(e)
            else:
                if on_phase is not None:
                    on_phase(RunState.PARSING)
                try:
                    return self._interpret(raw, attempt)
                except TransientFailureError as e:
                    last_error = e

            if last_error.rate_limited:
                self.budget.mark_exhausted()

            if attempt < self.max_attempts:
                delay = self._delay_for(last_error)
                logger.warning(
                    "Attempt %d/%d failed (%s), retrying in %.1fs",
                    attempt,
                    self.max_attempts,
                    last_error,
                    delay,
                )
                await self._sleep(delay)

        raise RetriesExhaustedError(self.max_attempts, last_error)

    def _classify_provider_error(self, error: ProviderError) -> TransientFailureError:
        if error.is_rate_limited:
            return TransientFailureError(
                f"Rate limited: {error}", rate_limited=True, retry_after=error.retry_after
            )
        if error.is_transient:
            return TransientFailureError(f"Provider error: {error}")
        raise PermanentFailureError(f"Provider error: {error}") from error

    def _interpret(self, raw: str, attempt: int) -> InvocationResult:
        outcome = self.parser.parse(raw)
        if outcome.ok:
            return InvocationResult(
                payload=outcome.payload,
                raw_response=raw,
                attempts=attempt,
                synthesized=outcome.synthesized,
            )

        if looks_like_refusal(raw):
            raise PermanentFailureError(
                f"Model declined the request: {raw.strip()[:200]}",
                kind="refusal",
                raw_response=raw,
            )
        if outcome.error_kind is ParseErrorKind.INVALID_PAYLOAD:
            raise PermanentFailureError(
                outcome.message, kind="invalid_payload", raw_response=raw
            )
        raise TransientFailureError(f"Unstructured response: {outcome.message}")

    def _delay_for(self, error: TransientFailureError) -> float:
        if error.rate_limited:
            if error.retry_after is not None:
                return error.retry_after
            return self.rate_limit_retry_delay_seconds
        return self.retry_delay_seconds
