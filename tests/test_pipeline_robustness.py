"""Tests for the retry primitive and degradation tracking."""

import pytest

from pipeline_robustness import (
    ErrorCategory,
    GracefulDegradation,
    PipelineError,
    RateLimitedError,
    UpstreamError,
    compute_retry_delay,
    retry_with_backoff,
)


def test_retry_delay_is_linear_in_attempt_number():
    error = UpstreamError("boom", status=500)
    assert compute_retry_delay(1, error) == 1.0
    assert compute_retry_delay(2, error) == 2.0


def test_rate_limited_retries_wait_longer():
    error = RateLimitedError("slow down", status=429)
    assert compute_retry_delay(1, error) == 2.0
    assert compute_retry_delay(2, error) == 4.0


async def test_call_failing_every_time_is_attempted_exactly_three_times():
    calls = []
    delays = []

    @retry_with_backoff(
        max_attempts=3,
        base_delay=0.001,
        exceptions=(UpstreamError,),
        on_retry=lambda attempt, e, delay: delays.append(delay),
    )
    async def always_fails():
        calls.append(1)
        raise UpstreamError("HTTP 500", status=500)

    with pytest.raises(UpstreamError):
        await always_fails()

    assert len(calls) == 3
    # No wait after the final attempt
    assert delays == [0.001, 0.002]


async def test_rate_limit_backoff_uses_rate_limit_delay():
    delays = []

    @retry_with_backoff(
        max_attempts=3,
        base_delay=0.001,
        rate_limit_delay=0.002,
        exceptions=(UpstreamError,),
        on_retry=lambda attempt, e, delay: delays.append(delay),
    )
    async def rate_limited():
        raise RateLimitedError("429", status=429)

    with pytest.raises(RateLimitedError):
        await rate_limited()

    assert delays == [0.002, 0.004]


async def test_succeeds_once_upstream_recovers():
    attempts = []

    @retry_with_backoff(max_attempts=3, base_delay=0, exceptions=(UpstreamError,))
    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise UpstreamError("temporarily down")
        return "ok"

    assert await flaky() == "ok"
    assert len(attempts) == 3


async def test_unlisted_exceptions_are_not_retried():
    attempts = []

    @retry_with_backoff(max_attempts=3, base_delay=0, exceptions=(UpstreamError,))
    async def broken():
        attempts.append(1)
        raise TypeError("bug")

    with pytest.raises(TypeError):
        await broken()
    assert len(attempts) == 1


def test_degradation_summary_tracks_sources_and_slots():
    degradation = GracefulDegradation()
    degradation.record_source_failure("apod:2026-10-18", UpstreamError("HTTP 503"))
    degradation.record_slot_failure(2, "both images failed")

    assert degradation.get_summary() == {
        "failed_sources": ["apod:2026-10-18"],
        "failed_slots": [2],
        "error_count": 2,
    }
    assert degradation.errors[0].category is ErrorCategory.RECOVERABLE
    assert degradation.errors[0].subject == "apod:2026-10-18"
    assert degradation.errors[1].to_dict()["stage"] == "render"


def test_pipeline_error_from_exception_keeps_message():
    try:
        raise ValueError("bad payload")
    except ValueError as e:
        error = PipelineError.from_exception(e, stage="fetch", subject="earth")

    assert error.message == "bad payload"
    assert error.subject == "earth"
    assert "ValueError" in error.traceback_str


def test_source_failure_recorded_outside_handler_keeps_its_traceback():
    try:
        raise UpstreamError("HTTP 503", status=503)
    except UpstreamError as e:
        caught = e

    # Gathered results are recorded after the except block has exited
    degradation = GracefulDegradation()
    degradation.record_source_failure("earth", caught)

    error = degradation.errors[0]
    assert error.stage == "fetch"
    assert "UpstreamError: HTTP 503" in error.traceback_str
