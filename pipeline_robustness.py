#!/usr/bin/env python3
"""
Zima Blue Wallpaper Generator - Robustness Module

Shared robustness infrastructure:
- Error categorization and structured error records
- Upstream error types (rate limiting vs. other failures)
- Retry with linear, rate-limit aware backoff
- Graceful degradation tracking
- Logging setup
"""

import asyncio
import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger("zima_wallpaper")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# =============================================================================
# ERROR CATEGORIES
# =============================================================================

class ErrorCategory(Enum):
    """Classification of errors by severity and recoverability."""
    RECOVERABLE = "recoverable"  # Can retry or substitute
    WARNING = "warning"          # Non-critical, log and continue


@dataclass
class PipelineError:
    """Structured error representation."""
    category: ErrorCategory
    message: str
    stage: str
    subject: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    traceback_str: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "stage": self.stage,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "traceback": self.traceback_str
        }

    @classmethod
    def from_exception(
        cls,
        e: Exception,
        stage: str,
        category: ErrorCategory = ErrorCategory.RECOVERABLE,
        subject: Optional[str] = None
    ) -> "PipelineError":
        return cls(
            category=category,
            message=str(e),
            stage=stage,
            subject=subject,
            traceback_str="".join(traceback.format_exception(type(e), e, e.__traceback__))
        )


class UpstreamError(Exception):
    """An upstream HTTP call returned a failure status or an unusable payload."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class RateLimitedError(UpstreamError):
    """Upstream answered HTTP 429."""


# =============================================================================
# RETRY WITH BACKOFF
# =============================================================================

T = TypeVar("T")


def compute_retry_delay(
    attempt: int,
    error: BaseException,
    base_delay: float = 1.0,
    rate_limit_delay: float = 2.0
) -> float:
    """
    Delay before the next attempt, growing linearly with the attempt number.

    Args:
        attempt: 1-based number of the attempt that just failed.
        error: The failure raised by that attempt.
        base_delay: Seconds per attempt for ordinary failures.
        rate_limit_delay: Seconds per attempt after a rate limit response.
    """
    if isinstance(error, RateLimitedError):
        return rate_limit_delay * attempt
    return base_delay * attempt


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    rate_limit_delay: float = 2.0,
    exceptions: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry decorator for coroutine functions, with linear backoff that waits
    longer after rate limiting.

    The wrapped coroutine is attempted at most ``max_attempts`` times. Between
    attempts it sleeps ``rate_limit_delay * attempt`` after a
    :class:`RateLimitedError` and ``base_delay * attempt`` after any other
    failure. There is no sleep after the final attempt; the last exception is
    re-raised.

    Args:
        max_attempts: Total number of attempts, including the first one.
        base_delay: Seconds per attempt for ordinary failures.
        rate_limit_delay: Seconds per attempt after HTTP 429.
        exceptions: Tuple of exception types to catch and retry.
        on_retry: Optional callback(attempt, exception, delay) for logging.

    Returns:
        Decorated function with retry logic.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e
                    if attempt >= max_attempts:
                        break

                    delay = compute_retry_delay(attempt, e, base_delay, rate_limit_delay)
                    if on_retry:
                        on_retry(attempt, e, delay)
                    else:
                        logger.warning(
                            f"Attempt {attempt}/{max_attempts} failed for {func.__name__}: {e}. "
                            f"Retrying in {delay:.1f}s..."
                        )
                    await asyncio.sleep(delay)

            logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {last_exception}")
            raise last_exception

        return async_wrapper

    return decorator


# =============================================================================
# GRACEFUL DEGRADATION
# =============================================================================

class GracefulDegradation:
    """
    Records failures that were absorbed instead of propagated.

    Lets a fetch or generation pass finish with reduced output and still
    report what went missing.
    """

    def __init__(self):
        self.failed_sources: list[str] = []
        self.failed_slots: list[int] = []
        self.errors: list[PipelineError] = []

    def record_source_failure(self, source: str, error: Exception) -> None:
        """Record an upstream call that yielded zero candidates."""
        self.failed_sources.append(source)
        self.errors.append(PipelineError.from_exception(error, stage="fetch", subject=source))
        logger.warning(f"⚠️ Source '{source}' unavailable, continuing with others: {error}")

    def record_slot_failure(self, index: int, error: str) -> None:
        """Record a slot that could not be rendered."""
        self.failed_slots.append(index)
        self.errors.append(PipelineError(
            category=ErrorCategory.WARNING,
            message=error,
            stage="render",
            subject=str(index),
        ))
        logger.warning(f"⚠️ Slot {index + 1} failed: {error}")

    def get_summary(self) -> dict[str, Any]:
        """Get summary of all degradation events."""
        return {
            "failed_sources": list(self.failed_sources),
            "failed_slots": list(self.failed_slots),
            "error_count": len(self.errors)
        }


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[Path] = Path("./logs")
) -> logging.Logger:
    """
    Configure the application logger with timestamps and proper formatting.

    Args:
        level: Console log level.
        log_dir: Directory for the DEBUG file log; None disables file logging.
    """
    app_logger = logging.getLogger("zima_wallpaper")
    app_logger.setLevel(logging.DEBUG)
    app_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        file_handler = logging.FileHandler(log_dir / f"zima_{timestamp}.log")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        app_logger.addHandler(file_handler)

    return app_logger
