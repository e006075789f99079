#!/usr/bin/env python3
"""
Unit tests for the shared retry/backoff executor.
"""

import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from http_retry import (
    NonRetryableError,
    Outcome,
    RetriesExhaustedError,
    RetryableStatusError,
    classify_status,
    execute_with_retry,
    retry_after_seconds,
)


def make_response(status_code, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    return response


def sequence(*responses):
    perform = MagicMock()
    perform.side_effect = list(responses)
    return perform


class TestClassifyStatus:
    def test_success_codes(self):
        assert classify_status(make_response(200)) is Outcome.SUCCESS
        assert classify_status(make_response(204)) is Outcome.SUCCESS

    def test_retryable_codes(self):
        assert classify_status(make_response(429)) is Outcome.RETRY
        assert classify_status(make_response(500)) is Outcome.RETRY
        assert classify_status(make_response(503)) is Outcome.RETRY

    def test_terminal_codes(self):
        assert classify_status(make_response(400)) is Outcome.FATAL
        assert classify_status(make_response(401)) is Outcome.FATAL
        assert classify_status(make_response(404)) is Outcome.FATAL


class TestRetryAfter:
    def test_integer_header(self):
        assert retry_after_seconds(make_response(429, {"Retry-After": "3"})) == 3

    def test_missing_header(self):
        assert retry_after_seconds(make_response(429)) is None

    def test_http_date_is_ignored(self):
        response = make_response(429, {"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
        assert retry_after_seconds(response) is None


class TestExecuteWithRetry:
    @patch("http_retry.time.sleep")
    def test_two_server_errors_then_success(self, mock_sleep):
        ok = make_response(200)
        perform = sequence(make_response(500), make_response(500), ok)

        result = execute_with_retry(perform)

        assert result is ok
        assert perform.call_count == 3
        # Linear backoff: 1 * base, then 2 * base
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch("http_retry.time.sleep")
    def test_rate_limit_uses_retry_after(self, mock_sleep):
        perform = sequence(make_response(429, {"Retry-After": "5"}), make_response(200))

        execute_with_retry(perform)

        assert perform.call_count == 2
        mock_sleep.assert_called_once_with(5)

    @patch("http_retry.time.sleep")
    def test_rate_limit_without_header_uses_backoff(self, mock_sleep):
        perform = sequence(make_response(429), make_response(200))

        execute_with_retry(perform, base_delay=0.5)

        mock_sleep.assert_called_once_with(0.5)

    def test_retry_after_is_honoured_in_real_time(self):
        perform = sequence(make_response(429, {"Retry-After": "1"}), make_response(200))

        started = time.monotonic()
        result = execute_with_retry(perform)
        elapsed = time.monotonic() - started

        assert result.status_code == 200
        assert perform.call_count == 2
        assert elapsed >= 1.0

    @patch("http_retry.time.sleep")
    def test_not_found_is_terminal(self, mock_sleep):
        perform = sequence(make_response(404), make_response(200))

        with pytest.raises(NonRetryableError) as excinfo:
            execute_with_retry(perform)

        assert perform.call_count == 1
        assert excinfo.value.status_code == 404
        mock_sleep.assert_not_called()

    @patch("http_retry.time.sleep")
    def test_exhausted_retries_wrap_last_error(self, mock_sleep):
        perform = sequence(make_response(500), make_response(502), make_response(503))

        with pytest.raises(RetriesExhaustedError) as excinfo:
            execute_with_retry(perform)

        assert perform.call_count == 3
        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_error, RetryableStatusError)
        assert excinfo.value.last_error.status_code == 503
        assert excinfo.value.__cause__ is excinfo.value.last_error
        # No sleep after the final attempt
        assert mock_sleep.call_count == 2

    @patch("http_retry.time.sleep")
    def test_transport_errors_are_retried(self, mock_sleep):
        ok = make_response(200)
        perform = sequence(requests.exceptions.ConnectionError("refused"), ok)

        assert execute_with_retry(perform) is ok
        assert perform.call_count == 2

    @patch("http_retry.time.sleep")
    def test_transport_errors_exhaust(self, mock_sleep):
        perform = MagicMock(side_effect=requests.exceptions.Timeout("slow"))

        with pytest.raises(RetriesExhaustedError) as excinfo:
            execute_with_retry(perform, max_attempts=2)

        assert perform.call_count == 2
        assert isinstance(excinfo.value.last_error, requests.exceptions.Timeout)

    @patch("http_retry.time.sleep")
    def test_custom_classifier(self, mock_sleep):
        def always_fatal(response):
            return Outcome.FATAL

        perform = sequence(make_response(200))
        with pytest.raises(NonRetryableError):
            execute_with_retry(perform, classify=always_fatal)
