"""
Retry executor with exponential backoff for network operations.

A request is described once, as an immutable ``RetryRequest``; each attempt
is evaluated by the pure function ``attempt_once`` from that description and
the attempt number alone. ``execute_with_retry`` is the only place in the
package that sleeps between attempts.

Every attempt ends in one of three signals:

- success: the success predicate accepted the result;
- retryable: rate limiting, a server error, or a transport-level exception;
- terminal: anything else, returned immediately without further attempts.

After the last attempt the final result (or error) is returned as-is. The
caller decides whether an exhausted retryable outcome stops the run or
fails the item.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

import requests

logger = logging.getLogger(__name__)

# HTTP statuses worth retrying: timeout, rate limit, server errors
RETRYABLE_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable_status(status: Optional[int]) -> bool:
    """Return True if an HTTP status code signals a transient condition."""
    return status in RETRYABLE_HTTP_STATUSES


def is_transient_error(error: BaseException) -> bool:
    """Classify transport-level exceptions raised by ``requests``."""
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return is_retryable_status(error.response.status_code)
    return isinstance(error, (TimeoutError, ConnectionError))


def _accept_any(result: Any) -> bool:
    return True


def _never(result: Any) -> bool:
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with delay ``base_delay * 2 ** attempt`` capped at ``max_delay``."""
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the zero-based ``attempt`` failed."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)


@dataclass(frozen=True)
class RetryRequest:
    """Immutable description of one retriable network operation.

    Args:
        description: Human-readable name used in log messages
        operation: Zero-argument callable performing one round-trip
        is_success: Predicate accepting a returned result as success
        is_retryable_result: Predicate marking a non-successful result as transient
        is_retryable_error: Predicate marking a caught exception as transient
        handled_errors: Exception types turned into outcomes; any other
            exception propagates to the caller unchanged
    """
    description: str
    operation: Callable[[], Any]
    is_success: Callable[[Any], bool] = _accept_any
    is_retryable_result: Callable[[Any], bool] = _never
    is_retryable_error: Callable[[BaseException], bool] = is_transient_error
    handled_errors: Tuple[Type[BaseException], ...] = (requests.RequestException, OSError)


@dataclass(frozen=True)
class AttemptResult:
    """Signal produced by one attempt."""
    attempt: int
    result: Any = None
    error: Optional[BaseException] = None
    succeeded: bool = False
    retryable: bool = False


@dataclass(frozen=True)
class RetryOutcome:
    """Final outcome after at most ``policy.max_attempts`` attempts."""
    attempts: int
    result: Any = None
    error: Optional[BaseException] = None
    succeeded: bool = False
    retryable: bool = False

    def describe(self) -> str:
        if self.error is not None:
            return f"{type(self.error).__name__}: {self.error}"
        return repr(self.result)


def attempt_once(request: RetryRequest, attempt: int) -> AttemptResult:
    """Run a single attempt of ``request`` and classify it."""
    try:
        result = request.operation()
    except request.handled_errors as e:
        return AttemptResult(
            attempt=attempt,
            error=e,
            retryable=bool(request.is_retryable_error(e)),
        )

    if request.is_success(result):
        return AttemptResult(attempt=attempt, result=result, succeeded=True)
    return AttemptResult(
        attempt=attempt,
        result=result,
        retryable=bool(request.is_retryable_result(result)),
    )


def execute_with_retry(
    request: RetryRequest,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome:
    """
    Run ``request`` until it succeeds, fails terminally, or attempts run out.

    Args:
        request: The operation and its classification predicates
        policy: Attempt bound and backoff parameters
        sleep: Sleep function (injected by tests)

    Returns:
        RetryOutcome carrying the last observed result or error.

    Example:
        >>> outcome = execute_with_retry(
        ...     RetryRequest("upload photo.jpg", lambda: session.post(url, data=blob),
        ...                  is_success=lambda r: r.ok,
        ...                  is_retryable_result=lambda r: is_retryable_status(r.status_code)),
        ...     RetryPolicy(max_attempts=3, base_delay=1.0))
    """
    last = None
    for attempt in range(policy.max_attempts):
        last = attempt_once(request, attempt)
        if last.succeeded or not last.retryable:
            break

        if attempt < policy.max_attempts - 1:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{request.description} failed (attempt {attempt + 1}/{policy.max_attempts}): "
                f"{_describe_attempt(last)}. Retrying in {delay:.1f} seconds..."
            )
            sleep(delay)
        else:
            logger.error(
                f"{request.description} failed after {policy.max_attempts} attempts: "
                f"{_describe_attempt(last)}"
            )

    return RetryOutcome(
        attempts=last.attempt + 1,
        result=last.result,
        error=last.error,
        succeeded=last.succeeded,
        retryable=last.retryable,
    )


def _describe_attempt(attempt: AttemptResult) -> str:
    if attempt.error is not None:
        return f"{type(attempt.error).__name__}: {attempt.error}"
    status = getattr(attempt.result, 'status_code', None)
    if status is not None:
        return f"HTTP {status}"
    return repr(attempt.result)
