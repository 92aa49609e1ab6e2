"""Claude text-completion client."""

import logging
import os

import anthropic

from viralyze.errors import ProviderError

logger = logging.getLogger(__name__)


def _retry_after(exc: anthropic.APIStatusError) -> float | None:
    """Seconds from the ``retry-after`` header, if the provider sent one."""
    try:
        value = exc.response.headers.get("retry-after")
    except AttributeError:
        return None
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _response_text(response) -> str:
    raw_text = ""
    for block in response.content:
        if block.type == "text":
            raw_text += block.text
    return raw_text


class ClaudeInferenceClient:
    """Inference client using the Anthropic Claude API.

    Maps SDK exceptions onto ProviderError so the retry engine can tell
    rate limits and server errors apart from permanent failures. A missing
    API key does not crash construction; every call then fails permanently.
    """

    def __init__(self, api_key: str | None = None) -> None:
        """Initialize the client.

        Args:
            api_key: Anthropic API key. Falls back to ANTHROPIC_API_KEY env var.
        """
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self._available = bool(self._api_key)

        if self._available:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)
        else:
            self._client = None
            logger.warning("ClaudeInferenceClient: No API key found, client unavailable")

    @property
    def name(self) -> str:
        return "claude"

    @property
    def is_available(self) -> bool:
        return self._available

    async def complete(self, prompt: str, model_id: str, max_output_tokens: int) -> str:
        """Send one user message and return the concatenated text blocks.

        Raises:
            ProviderError: On any API failure
        """
        if self._client is None:
            raise ProviderError("Claude client is not available (no API key)", permanent=True)

        try:
            response = await self._client.messages.create(
                model=model_id,
                max_tokens=max_output_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as exc:
            raise ProviderError(
                f"Claude rate limit: {exc}",
                is_rate_limited=True,
                status_code=exc.status_code,
                retry_after=_retry_after(exc),
            ) from exc
        except anthropic.APIStatusError as exc:
            raise ProviderError(
                f"Claude API error: {exc}", status_code=exc.status_code
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderError(f"Claude connection error: {exc}") from exc
        except anthropic.APIError as exc:
            raise ProviderError(f"Claude API error: {exc}") from exc

        return _response_text(response)
