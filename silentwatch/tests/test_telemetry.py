"""Tests for PII scrubbing, sampling and the token-bucket rate limiter."""

from __future__ import annotations

import pytest
from conftest import make_event

from silentwatch.models.events import TelemetryEventType
from silentwatch.telemetry.privacy import scrub_event, scrub_pii, scrub_value
from silentwatch.telemetry.rate_limiter import TokenBucket
from silentwatch.telemetry.sampling import ProbabilisticSampler

# ---------------------------------------------------------------------------
# Scrubbing
# ---------------------------------------------------------------------------


class TestScrubPii:
    def test_email_redacted(self) -> None:
        assert scrub_pii("contact jane.doe@example.com now") == "contact [REDACTED_EMAIL] now"

    def test_ssn_redacted(self) -> None:
        assert scrub_pii("ssn 123-45-6789") == "ssn [REDACTED_SSN]"

    def test_credit_card_redacted(self) -> None:
        assert scrub_pii("card 4111 1111 1111 1111 ok") == "card [REDACTED_CC] ok"
        assert scrub_pii("card 4111111111111111") == "card [REDACTED_CC]"

    def test_long_numbers_failing_checksum_untouched(self) -> None:
        """Should keep epoch-millisecond timestamps and numeric ids that are not card numbers."""
        assert scrub_pii("at 1760000000000") == "at 1760000000000"
        assert scrub_pii("order 1234567890123456") == "order 1234567890123456"

    def test_short_numbers_untouched(self) -> None:
        assert scrub_pii("order 12345 qty 3") == "order 12345 qty 3"

    def test_text_without_pii_unchanged(self) -> None:
        assert scrub_pii("Pay now") == "Pay now"


class TestScrubValue:
    def test_nested_structures(self) -> None:
        value = {
            "user": {"email": "a@b.io", "tags": ["x", "ssn 123-45-6789"]},
            "count": 3,
            "pair": ("c@d.org", None),
        }
        result = scrub_value(value)
        assert result == {
            "user": {"email": "[REDACTED_EMAIL]", "tags": ["x", "ssn [REDACTED_SSN]"]},
            "count": 3,
            "pair": ("[REDACTED_EMAIL]", None),
        }

    def test_input_not_mutated(self) -> None:
        value = {"email": "a@b.io"}
        scrub_value(value)
        assert value == {"email": "a@b.io"}

    def test_keys_left_alone(self) -> None:
        assert scrub_value({"a@b.io": 1}) == {"a@b.io": 1}


class TestScrubEvent:
    def test_payload_and_page_scrubbed(self) -> None:
        event = make_event(
            TelemetryEventType.CONSOLE_ERROR,
            {"message": "failed for bob@corp.com"},
            page="/users/bob@corp.com",
        )
        scrubbed = scrub_event(event)
        assert scrubbed.payload == {"message": "failed for [REDACTED_EMAIL]"}
        assert scrubbed.page == "/users/[REDACTED_EMAIL]"
        assert scrubbed.event_id == event.event_id
        assert event.payload == {"message": "failed for bob@corp.com"}

    def test_clean_event_structurally_equal(self) -> None:
        """Should return an event without PII unchanged."""
        event = make_event(payload={"viewport": [1280, 720]})
        assert scrub_event(event).model_dump() == event.model_dump()


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------


class TestProbabilisticSampler:
    def test_rate_one_always_samples(self) -> None:
        sampler = ProbabilisticSampler(1.0, random_source=lambda: 0.999)
        assert all(sampler.should_sample() for _ in range(100))

    def test_rate_zero_never_samples(self) -> None:
        sampler = ProbabilisticSampler(0.0, random_source=lambda: 0.0)
        assert not any(sampler.should_sample() for _ in range(100))

    def test_threshold_comparison(self) -> None:
        draws = iter([0.1, 0.5, 0.49])
        sampler = ProbabilisticSampler(0.5, random_source=lambda: next(draws))
        assert [sampler.should_sample() for _ in range(3)] == [True, False, True]

    @pytest.mark.parametrize("rate", [-0.1, 1.5])
    def test_out_of_range_rejected(self, rate: float) -> None:
        with pytest.raises(ValueError, match="Sampling rate"):
            ProbabilisticSampler(rate)


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


class _Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTokenBucket:
    def test_burst_up_to_capacity(self) -> None:
        ticker = _Ticker()
        bucket = TokenBucket(5, refill_period_seconds=60.0, clock=ticker)
        assert [bucket.allow() for _ in range(5)] == [True] * 5
        assert bucket.allow() is False

    def test_full_refill_after_period(self) -> None:
        ticker = _Ticker()
        bucket = TokenBucket(3, refill_period_seconds=60.0, clock=ticker)
        for _ in range(3):
            bucket.allow()
        assert bucket.allow() is False

        ticker.now = 60.0
        assert [bucket.allow() for _ in range(3)] == [True] * 3
        assert bucket.allow() is False

    def test_partial_refill(self) -> None:
        """Should refill tokens in proportion to elapsed time."""
        ticker = _Ticker()
        bucket = TokenBucket(60, refill_period_seconds=60.0, clock=ticker)
        for _ in range(60):
            bucket.allow()
        ticker.now = 1.5
        assert bucket.allow() is True
        assert bucket.allow() is False

    def test_tokens_never_exceed_capacity(self) -> None:
        ticker = _Ticker()
        bucket = TokenBucket(4, clock=ticker)
        ticker.now = 10_000.0
        assert bucket.tokens == pytest.approx(4.0)

    def test_invalid_parameters(self) -> None:
        with pytest.raises(ValueError):
            TokenBucket(0)
        with pytest.raises(ValueError):
            TokenBucket(1, refill_period_seconds=0)
