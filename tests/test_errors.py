"""Tests for error categorization and the warning channel."""

import logging
import socket
import ssl

import httpx
import pytest

from http_runner.errors import (
    EngineError,
    ErrorCategory,
    RequestCancelledError,
    TransportError,
    categorize_exception,
    error_category_to_reason,
)
from http_runner.notify import WarningChannel


def chained(outer: BaseException, cause: BaseException) -> BaseException:
    outer.__cause__ = cause
    return outer


class TestCategorizeException:
    @pytest.mark.parametrize(
        "exc, category",
        [
            (httpx.ConnectTimeout("slow"), ErrorCategory.TIMEOUT),
            (httpx.ReadTimeout("slow"), ErrorCategory.TIMEOUT),
            (TimeoutError(), ErrorCategory.TIMEOUT),
            (httpx.ProxyError("bad proxy"), ErrorCategory.PROXY_ERROR),
            (httpx.ConnectError("refused"), ErrorCategory.CONNECTION_ERROR),
            (httpx.ReadError("reset"), ErrorCategory.CONNECTION_ERROR),
            (httpx.RemoteProtocolError("garbage"), ErrorCategory.PROTOCOL_ERROR),
            (ConnectionRefusedError(), ErrorCategory.CONNECTION_ERROR),
            (ValueError("other"), ErrorCategory.UNKNOWN_ERROR),
        ],
    )
    def test_direct(self, exc, category):
        assert categorize_exception(exc) is category

    def test_ssl_cause(self):
        exc = chained(httpx.ConnectError("handshake"), ssl.SSLError("bad cert"))
        assert categorize_exception(exc) is ErrorCategory.SSL_ERROR

    def test_dns_cause(self):
        exc = chained(httpx.ConnectError("lookup"), socket.gaierror(-2, "Name or service not known"))
        assert categorize_exception(exc) is ErrorCategory.DNS_ERROR

    def test_reason_strings(self):
        assert error_category_to_reason(ErrorCategory.TIMEOUT) == "Request timed out"
        assert error_category_to_reason(None) == ""


class TestErrorHierarchy:
    def test_transport_error_carries_category(self):
        error = TransportError("boom", ErrorCategory.DNS_ERROR)
        assert isinstance(error, EngineError)
        assert error.category is ErrorCategory.DNS_ERROR

    def test_cancellation_is_not_an_engine_error(self):
        assert not issubclass(RequestCancelledError, EngineError)


class TestWarningChannel:
    def test_forwards_to_callback(self):
        received = []
        WarningChannel(received.append).warn("careful")
        assert received == ["careful"]

    def test_logs_warning_without_callback(self, caplog):
        with caplog.at_level(logging.WARNING, logger="http_runner"):
            WarningChannel().warn("careful")
        assert "careful" in caplog.text

    def test_raising_callback_never_propagates(self, caplog):
        def broken(message: str) -> None:
            raise RuntimeError("callback broke")

        with caplog.at_level(logging.ERROR, logger="http_runner"):
            WarningChannel(broken).warn("careful")

        assert "Warning callback failed" in caplog.text
