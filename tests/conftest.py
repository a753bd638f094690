"""Pytest configuration and fixtures for http-runner tests.

This file provides:
- make_descriptor: RequestDescriptor factory with sensible defaults
- WarningRecorder: Notifier that collects warnings for assertions
- RecordingHandler: httpx.MockTransport handler that records requests
- Fixtures: settings bound to a temporary cookie file, executor factory
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from http_runner.executor import RequestExecutor
from http_runner.models import EngineSettings, RequestDescriptor

DEFAULT_URL = "http://api.example.com/items"


def make_descriptor(
    method: str = "GET",
    url: str = DEFAULT_URL,
    headers: dict[str, str] | None = None,
    body: bytes | str | None = None,
    **kwargs: Any,
) -> RequestDescriptor:
    """Create a RequestDescriptor for testing.

    Prefer this over constructing RequestDescriptor directly - it documents
    which fields are typically varied in tests.
    """
    return RequestDescriptor(method=method, url=url, headers=headers or {}, body=body, **kwargs)


class WarningRecorder:
    """Notifier that keeps every warning it receives."""

    def __init__(self) -> None:
        self.messages: list[str] = []

    def __call__(self, message: str) -> None:
        self.messages.append(message)


class RecordingHandler:
    """MockTransport handler that records requests and replies via a callable.

    Usage:
        handler = RecordingHandler(lambda request: httpx.Response(200, text="ok"))
        transport = httpx.MockTransport(handler)
        ...
        assert handler.requests[0].headers["Authorization"] == "..."
    """

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._respond = respond or (lambda request: httpx.Response(200, text="ok"))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)


@pytest.fixture
def cookie_file(tmp_path: Path) -> Path:
    """Cookie jar location inside the test's temporary directory."""
    return tmp_path / "cookies" / "cookies.txt"


@pytest.fixture
def settings(cookie_file: Path) -> EngineSettings:
    """Default settings with cookies persisted to a temporary file."""
    return EngineSettings(cookie_file=str(cookie_file))


@pytest.fixture
def warnings_recorder() -> WarningRecorder:
    return WarningRecorder()


@pytest.fixture
def make_executor(
    settings: EngineSettings, warnings_recorder: WarningRecorder
) -> Callable[..., RequestExecutor]:
    """Factory for executors wired to a MockTransport.

    Accepts a handler (sync or async callable) and optional settings
    overrides; extra keyword arguments go to RequestExecutor.
    """

    def factory(
        handler: Callable[[httpx.Request], Any],
        settings_overrides: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> RequestExecutor:
        effective = settings.model_copy(update=settings_overrides or {})
        return RequestExecutor(
            effective,
            notifier=warnings_recorder,
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    return factory
