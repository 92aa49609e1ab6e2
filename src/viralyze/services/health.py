"""Run-start reachability check for the inference endpoint."""

import asyncio
import logging
import time

from pydantic import BaseModel

from viralyze.errors import ProviderError
from viralyze.services.interfaces import IInferenceClient

logger = logging.getLogger(__name__)


class HealthStatus(BaseModel):
    healthy: bool
    reason: str | None = None
    response_time_ms: float | None = None


class HealthGate:
    """One minimal round-trip; never books against the rate budget."""

    def __init__(
        self,
        client: IInferenceClient,
        model_id: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.client = client
        self.model_id = model_id
        self.timeout_seconds = timeout_seconds

    async def check(self) -> HealthStatus:
        start = time.monotonic()
        try:
            await asyncio.wait_for(
                self.client.complete("ping", self.model_id, 1),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            reason = f"Inference endpoint did not answer within {self.timeout_seconds:.0f}s"
            logger.error(reason)
            return HealthStatus(healthy=False, reason=reason)
        except ProviderError as e:
            reason = f"Inference endpoint unavailable: {e}"
            logger.error(reason)
            return HealthStatus(healthy=False, reason=reason)
        except Exception as e:
            reason = f"Health check failed: {type(e).__name__}: {e}"
            logger.exception(reason)
            return HealthStatus(healthy=False, reason=reason)

        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info("Inference endpoint healthy (%.0f ms)", elapsed_ms)
        return HealthStatus(healthy=True, response_time_ms=round(elapsed_ms, 1))
