"""Tolerant extraction of a StructuredPayload from free-form model output."""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from viralyze.models.analysis import StructuredPayload

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\r?\n?(.*?)```", re.DOTALL)

_REFUSAL_MARKERS = (
    "i apologize",
    "i'm sorry",
    "i am sorry",
    "i'm unable",
    "i am unable",
    "unable to analyze",
    "i cannot",
    "i can't",
    "as an ai",
)

INSUFFICIENT_CONTENT = "insufficient_content"


class ParseErrorKind(str, Enum):
    NO_JSON = "no_json"
    MALFORMED = "malformed"
    INVALID_PAYLOAD = "invalid_payload"


@dataclass
class ParseOutcome:
    """Either a payload or a typed reason why there is none."""

    payload: StructuredPayload | None = None
    error_kind: ParseErrorKind | None = None
    message: str = ""
    stage: str | None = None

    @property
    def ok(self) -> bool:
        return self.payload is not None

    @property
    def synthesized(self) -> bool:
        return self.stage == "synthesized"

    @classmethod
    def failure(cls, kind: ParseErrorKind, message: str) -> "ParseOutcome":
        return cls(error_kind=kind, message=message)


def looks_like_refusal(text: str) -> bool:
    """True when the response declines the task rather than answering it.

    Anything carrying a JSON object is treated as an answer, even if a factor
    happens to contain one of the marker phrases.
    """
    if not text or "{" in text:
        return False
    lowered = text.strip().lower()
    return any(marker in lowered for marker in _REFUSAL_MARKERS)


def extract_fenced_block(text: str) -> str | None:
    """Contents of the first ``` fenced block, if any."""
    match = _FENCE_RE.search(text)
    if not match:
        return None
    content = match.group(1).strip()
    return content or None


def extract_brace_span(text: str) -> str | None:
    """First balanced top-level ``{...}`` span.

    Braces inside JSON strings (including escaped quotes) are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced from this brace; try the next opening brace.
        start = text.find("{", start + 1)
    return None


class ResultParser:
    """Two-stage JSON extractor with a synthesis fallback for tiny responses."""

    def __init__(self, min_content_chars: int = 100):
        self.min_content_chars = min_content_chars

    def parse(self, raw_text: str | None) -> ParseOutcome:
        """Parse a response. Never raises."""
        text = (raw_text or "").strip()

        candidates: list[tuple[str, str]] = []
        fenced = extract_fenced_block(text)
        if fenced is not None:
            candidates.append(("fenced", fenced))
            inner = extract_brace_span(fenced)
            if inner is not None and inner != fenced:
                candidates.append(("fenced", inner))
        span = extract_brace_span(text)
        if span is not None and all(span != c for _, c in candidates):
            candidates.append(("braces", span))

        if not candidates:
            if self._can_synthesize(text):
                logger.info("Minimal response (%d chars), synthesizing payload", len(text))
                return self._synthesize(text)
            return ParseOutcome.failure(
                ParseErrorKind.NO_JSON, "No JSON object found in response"
            )

        last_error = ""
        for stage, candidate in candidates:
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError as e:
                last_error = f"Invalid JSON ({stage}): {e}"
                continue
            if not isinstance(data, dict):
                last_error = f"Expected a JSON object ({stage}), got {type(data).__name__}"
                continue
            return self._validate(data, stage)

        return ParseOutcome.failure(ParseErrorKind.MALFORMED, last_error)

    def _can_synthesize(self, text: str) -> bool:
        return (
            bool(text)
            and len(text) < self.min_content_chars
            and "{" not in text
            and not looks_like_refusal(text)
        )

    def _synthesize(self, text: str) -> ParseOutcome:
        payload = StructuredPayload(
            classification=INSUFFICIENT_CONTENT,
            primary_factors=[INSUFFICIENT_CONTENT],
            opening_strategy=text,
            confidence=0.0,
        )
        return ParseOutcome(payload=payload, stage="synthesized")

    def _validate(self, data: dict, stage: str) -> ParseOutcome:
        try:
            payload = StructuredPayload.model_validate(data)
        except ValidationError as e:
            return ParseOutcome.failure(ParseErrorKind.INVALID_PAYLOAD, str(e))

        missing = payload.missing_fields
        if missing:
            return ParseOutcome.failure(
                ParseErrorKind.INVALID_PAYLOAD,
                f"Payload missing required fields: {', '.join(missing)}",
            )
        return ParseOutcome(payload=payload, stage=stage)
