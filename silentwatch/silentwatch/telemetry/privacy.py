"""PII scrubbing for telemetry before it leaves the process.

Every telemetry event is scrubbed after admission control and before it is
transmitted or written to the durable queue, so unredacted data is never
stored locally either.  Scrubbing is a pure transformation: inputs are
never mutated and data without PII comes back structurally unchanged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from silentwatch.models.events import TelemetryEvent

logger = logging.getLogger(__name__)


# -- PII detection patterns --------------------------------------------------


def _redact_card(match: re.Match[str]) -> str:
    """Redact a card-like digit run only if it passes the Luhn checksum."""
    digits = [int(ch) for ch in match.group() if ch.isdigit()]
    total = 0
    for position, digit in enumerate(reversed(digits)):
        if position % 2:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return "[REDACTED_CC]" if total % 10 == 0 else match.group()


_PII_PATTERNS: list[tuple[str, re.Pattern[str], str | Callable[[re.Match[str]], str]]] = [
    (
        "email",
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        "[REDACTED_EMAIL]",
    ),
    (
        "ssn",
        re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
        "[REDACTED_SSN]",
    ),
    (
        "credit_card",
        re.compile(r"\b(?:\d[ -]?){12,15}\d\b"),
        _redact_card,
    ),
]


def scrub_pii(text: str) -> str:
    """Remove all detected PII from a text string.

    Parameters
    ----------
    text:
        Input text that may contain PII.

    Returns
    -------
    str
        Text with all detected PII replaced by redaction markers.
    """
    result = text
    for _name, pattern, replacement in _PII_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def scrub_value(value: Any) -> Any:
    """Recursively scrub PII from every string inside *value*.

    Dicts, lists and tuples are rebuilt with the same shape; dict keys are
    left alone.  Non-string scalars pass through untouched.
    """
    if isinstance(value, str):
        return scrub_pii(value)
    if isinstance(value, dict):
        return {key: scrub_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [scrub_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(scrub_value(item) for item in value)
    return value


def scrub_event(event: TelemetryEvent) -> TelemetryEvent:
    """Return a copy of *event* with PII removed from its page and payload."""
    scrubbed = event.model_copy(
        update={
            "page": scrub_pii(event.page),
            "payload": scrub_value(event.payload),
        }
    )
    if scrubbed.payload != event.payload:
        logger.debug("Redacted PII from %s event %s", event.type.value, event.event_id)
    return scrubbed
