"""
Retry/backoff executor shared by the Reader and LLM clients.

A caller hands over a function that performs one HTTP attempt and a function
that classifies the response; the executor owns the attempt budget, the
linear backoff and the ``Retry-After`` handling.
"""

import enum
import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_DELAY = 1.0  # seconds; retry n waits n * BASE_DELAY


class HTTPRequestError(Exception):
    """Base error for the HTTP layer."""


class RetryableStatusError(HTTPRequestError):
    """A response that may succeed if sent again (429, 5xx)."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class NonRetryableError(HTTPRequestError):
    """A failure that will not succeed on retry; surfaced immediately."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[requests.Response] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RetriesExhaustedError(HTTPRequestError):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"request failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class Outcome(enum.Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FATAL = "fatal"


def classify_status(response: requests.Response) -> Outcome:
    """
    Reader policy: 429 and 5xx are retried, any other 4xx is terminal,
    everything else goes back to the caller to inspect.
    """
    status = response.status_code
    if status == 429 or status >= 500:
        return Outcome.RETRY
    if 400 <= status < 500:
        return Outcome.FATAL
    return Outcome.SUCCESS


def retry_after_seconds(response: requests.Response) -> Optional[int]:
    """Integer seconds from a ``Retry-After`` header, None when absent or not an integer."""
    value = (response.headers or {}).get("Retry-After")
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _describe(response: requests.Response) -> str:
    if response.status_code == 429:
        return f"rate limited: {response.status_code}"
    if response.status_code >= 500:
        return f"server error: {response.status_code}"
    return f"request failed with status {response.status_code}"


def execute_with_retry(
    perform: Callable[[], requests.Response],
    classify: Callable[[requests.Response], Outcome] = classify_status,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY,
    label: str = "request",
) -> requests.Response:
    """
    Run ``perform`` until it yields a response ``classify`` accepts.

    Args:
        perform: Sends one request and returns the response. Transport
            failures (``requests.RequestException``) count as a failed attempt.
        classify: Maps a response to SUCCESS, RETRY or FATAL.
        max_attempts: Total attempts including the first.
        base_delay: Linear backoff unit in seconds.
        label: Name used in log lines.

    Returns:
        The first response classified as SUCCESS.

    Raises:
        NonRetryableError: On a FATAL response, without further attempts.
        RetriesExhaustedError: When every attempt failed; chained to the last failure.
    """
    last_error: Optional[BaseException] = None

    for attempt in range(max_attempts):
        delay = base_delay * (attempt + 1)

        try:
            response = perform()
        except requests.exceptions.RequestException as e:
            logger.warning(f"{label}: transport error on attempt {attempt + 1}: {e}")
            last_error = e
        else:
            outcome = classify(response)
            if outcome is Outcome.SUCCESS:
                return response

            if outcome is Outcome.FATAL:
                logger.error(f"{label}: {_describe(response)} (not retrying)")
                raise NonRetryableError(
                    _describe(response),
                    status_code=response.status_code,
                    response=response,
                )

            last_error = RetryableStatusError(_describe(response), response.status_code)
            if response.status_code == 429:
                advertised = retry_after_seconds(response)
                if advertised is not None:
                    delay = advertised
            response.close()
            logger.warning(f"{label}: {last_error} on attempt {attempt + 1}")

        if attempt + 1 < max_attempts:
            logger.debug(f"{label}: waiting {delay:.1f}s before retry")
            time.sleep(delay)

    raise RetriesExhaustedError(max_attempts, last_error) from last_error
