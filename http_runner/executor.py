"""Executor - Sends one request and captures a measured response.

The RequestExecutor builds TransportOptions for a RequestDescriptor, issues
the call with httpx, and returns an HttpResponseRecord with decoded body,
byte counts, timing phases and header names in their original casing.

Usage:
    async with RequestExecutor(settings) as executor:
        record = await executor.send(descriptor)

    pending = executor.start(descriptor)
    pending.cancel()
    await pending.result()   # raises RequestCancelledError
"""

from __future__ import annotations

import asyncio
import logging
import re
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from http_runner.auth import AuthenticationDispatcher
from http_runner.auth_hooks import CognitoSignIn
from http_runner.certificates import CertificateResolver
from http_runner.cookies import CookieStore
from http_runner.errors import (
    EngineError,
    ErrorCategory,
    RequestCancelledError,
    TransportError,
    categorize_exception,
    error_category_to_reason,
)
from http_runner.headers import (
    collapse_headers,
    header_bytes_size,
    normalize_header_names,
    raw_header_names,
)
from http_runner.models import (
    EchoedRequest,
    EngineSettings,
    HttpResponseRecord,
    RequestDescriptor,
    TimingPhases,
)
from http_runner.notify import Notifier, WarningChannel
from http_runner.options import RequestOptionsBuilder, TransportOptions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

_ESCAPED_UNICODE = re.compile(
    r"\\u(d[89ab][0-9a-f]{2})\\u(d[c-f][0-9a-f]{2})|\\u([0-9a-f]{4})", re.IGNORECASE
)


# =============================================================================
# Body decoding
# =============================================================================


def decode_body(response: httpx.Response, body: bytes) -> str:
    """Decode a streamed body with the response's charset.

    httpx falls back to UTF-8 when the charset is absent or unknown;
    undecodable bytes are replaced rather than failing.
    """
    return body.decode(response.encoding or "utf-8", errors="replace")


def decode_escaped_unicode(text: str) -> str:
    """Replace ``\\uXXXX`` escapes with the character they name.

    A UTF-16 surrogate pair becomes the single character it encodes; a lone
    surrogate is left escaped. An escaped double quote stays escaped (``\\"``)
    so it cannot terminate the quoted string it sits in.
    """

    def replace(match: re.Match) -> str:
        high, low, single = match.groups()
        if high is not None:
            code = 0x10000 + ((int(high, 16) - 0xD800) << 10) + (int(low, 16) - 0xDC00)
            return chr(code)
        code = int(single, 16)
        if 0xD800 <= code <= 0xDFFF:
            return match.group(0)
        char = chr(code)
        return '\\"' if char == '"' else char

    return _ESCAPED_UNICODE.sub(replace, text)


# =============================================================================
# Measurement
# =============================================================================


class PhaseTimer:
    """Collects timestamps from httpcore trace events for one exchange."""

    def __init__(self) -> None:
        self._marks: dict[str, float] = {"start": time.perf_counter()}

    async def trace(self, event_name: str, info: dict[str, Any]) -> None:
        # Event names are "<layer>.<step>.<started|complete|failed>".
        _, _, step = event_name.partition(".")
        self._marks[step] = time.perf_counter()

    def mark(self, name: str) -> None:
        self._marks[name] = time.perf_counter()

    def _span(self, begin: str, end: str) -> float | None:
        if begin not in self._marks or end not in self._marks:
            return None
        return (self._marks[end] - self._marks[begin]) * 1000

    def phases(self) -> TimingPhases:
        sent = "send_request_body.complete" if "send_request_body.complete" in self._marks else "start"
        headers = (
            "receive_response_headers.complete"
            if "receive_response_headers.complete" in self._marks
            else "response_headers"
        )
        return TimingPhases(
            dns_ms=None,
            tcp_ms=self._span("connect_tcp.started", "connect_tcp.complete"),
            tls_ms=self._span("start_tls.started", "start_tls.complete"),
            first_byte_ms=self._span(sent, headers),
            download_ms=self._span(headers, "body_complete"),
            total_ms=self._span("start", "body_complete"),
        )


@dataclass
class Exchange:
    """One request/response round-trip with its measurements."""

    response: httpx.Response
    body: bytes = b""
    body_size: int = 0
    headers_size: int = 0
    timer: PhaseTimer = field(default_factory=PhaseTimer)


# =============================================================================
# Cancellation handle
# =============================================================================


class PendingRequest:
    """Handle for an in-flight request started with RequestExecutor.start()."""

    def __init__(self, task: asyncio.Task[HttpResponseRecord]) -> None:
        self._task = task

    def cancel(self) -> bool:
        """Abort the request. Returns False if it already finished."""
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def result(self) -> HttpResponseRecord:
        """Wait for the response record.

        Raises:
            RequestCancelledError: If the request was cancelled.
            TransportError: If the request failed.
            AuthenticationError: If a delegated sign-in failed.
        """
        try:
            return await self._task
        except asyncio.CancelledError as e:
            current = asyncio.current_task()
            # The waiter itself is being cancelled: let that propagate.
            if current is not None and current.cancelling():
                raise
            raise RequestCancelledError("Request was cancelled") from e

    def __await__(self):
        return self.result().__await__()


# =============================================================================
# Executor
# =============================================================================


class RequestExecutor:
    """Executes requests and returns measured HttpResponseRecords.

    One executor owns one CookieStore; every request with cookie persistence
    enabled shares its jar.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        notifier: Notifier | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cognito_sign_in: CognitoSignIn | None = None,
        cookie_store: CookieStore | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            settings: Default settings; send() may override per request.
            notifier: Callback for user-facing warnings.
            transport: httpx transport used for every request instead of the
                network (mainly for tests). It is closed with each per-request
                client, so it must tolerate reuse after close.
            cognito_sign_in: Replacement for the boto3 Cognito sign-in.
            cookie_store: Cookie store to use; defaults to one bound to
                settings.cookie_path.
        """
        self._settings = settings or EngineSettings()
        self._transport = transport
        warnings = WarningChannel(notifier)
        self._cookie_store = cookie_store or CookieStore(self._settings.cookie_path)
        self._builder = RequestOptionsBuilder(
            AuthenticationDispatcher(warnings, cognito_sign_in),
            CertificateResolver(warnings),
            self._cookie_store,
        )

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Flush cookies to disk. Clients are per request, so nothing else is held."""
        if self._settings.remember_cookies and len(self._cookie_store.jar) > 0:
            await asyncio.to_thread(self._cookie_store.save)

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def cookie_store(self) -> CookieStore:
        return self._cookie_store

    async def clear_cookies(self) -> None:
        """Forget all persisted cookies."""
        await asyncio.to_thread(self._cookie_store.clear)

    def start(
        self,
        request: RequestDescriptor,
        settings: EngineSettings | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> PendingRequest:
        """Schedule send() on the running loop and return a cancellable handle."""
        task = asyncio.create_task(
            self.send(request, settings, on_progress=on_progress),
            name=f"http-runner {request.method} {request.url}",
        )
        return PendingRequest(task)

    async def send(
        self,
        request: RequestDescriptor,
        settings: EngineSettings | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> HttpResponseRecord:
        """Execute a request and return the measured response.

        Args:
            request: The fully-resolved request.
            settings: Settings for this request; defaults to the executor's.
            on_progress: Called with the running body byte count per chunk.

        Raises:
            TransportError: If the request fails (connect, DNS, TLS, timeout).
            AuthenticationError: If a delegated sign-in fails before sending.
        """
        settings = settings or self._settings
        options = await self._builder.build(request, settings)

        try:
            async with asyncio.timeout(options.timeout_seconds):
                exchange = await self._execute(options, on_progress)
        except TimeoutError as e:
            raise TransportError(
                f"Request timed out after {options.timeout_ms} ms", ErrorCategory.TIMEOUT
            ) from e

        if options.cookie_jar is not None:
            await asyncio.to_thread(self._cookie_store.save)

        record = self._build_record(request, options, exchange, settings)
        logger.debug(
            "%s %s -> %d (%d body bytes, %d header bytes)",
            record.request.method,
            record.request.url,
            record.status_code,
            record.body_size,
            record.headers_size,
        )
        return record

    async def _execute(
        self,
        options: TransportOptions,
        on_progress: ProgressCallback | None,
    ) -> Exchange:
        try:
            client_kwargs = options.client_kwargs()
        except (ValueError, ssl.SSLError) as e:
            # Unreadable PKCS#12 bundle, wrong passphrase or mismatched cert/key.
            raise TransportError(
                f"{error_category_to_reason(ErrorCategory.SSL_ERROR)}: invalid client certificate: {e}",
                ErrorCategory.SSL_ERROR,
            ) from e
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        async with httpx.AsyncClient(**client_kwargs) as client:
            exchanges: dict[int, Exchange] = {}

            async def resend(http_request: httpx.Request) -> httpx.Response:
                exchange = await self._transmit(client, http_request, options, on_progress)
                exchanges[id(exchange.response)] = exchange
                return exchange.response

            try:
                http_request = client.build_request(
                    options.method,
                    options.url,
                    headers=options.headers,
                    content=options.content,
                )
                for before_send in options.before_send:
                    http_request = await before_send(http_request)

                response = await resend(http_request)
                for after_response in options.after_response:
                    response = await after_response(response, resend)

            except httpx.RequestError as e:
                category = categorize_exception(e)
                raise TransportError(f"{error_category_to_reason(category)}: {e}", category) from e
            except UnicodeEncodeError as e:
                # httpx encodes header names/values as ASCII.
                raise TransportError(
                    f"Non-ASCII character {e.object[e.start:e.end]!r} in request headers",
                    ErrorCategory.PROTOCOL_ERROR,
                ) from e

        exchange = exchanges.get(id(response))
        if exchange is None:
            raise EngineError("after-response hook returned a response that was never sent")
        return exchange

    async def _transmit(
        self,
        client: httpx.AsyncClient,
        http_request: httpx.Request,
        options: TransportOptions,
        on_progress: ProgressCallback | None,
    ) -> Exchange:
        timer = PhaseTimer()
        http_request.extensions["trace"] = timer.trace

        response = await client.send(http_request, auth=options.basic_auth(), stream=True)
        timer.mark("response_headers")

        exchange = Exchange(
            response=response,
            headers_size=header_bytes_size(response.headers),
            timer=timer,
        )
        chunks: list[bytes] = []
        try:
            stream = response.aiter_bytes() if options.decompress else response.aiter_raw()
            async for chunk in stream:
                chunks.append(chunk)
                exchange.body_size += len(chunk)
                if on_progress is not None:
                    on_progress(exchange.body_size)
        finally:
            await response.aclose()

        timer.mark("body_complete")
        exchange.body = b"".join(chunks)
        return exchange

    def _build_record(
        self,
        request: RequestDescriptor,
        options: TransportOptions,
        exchange: Exchange,
        settings: EngineSettings,
    ) -> HttpResponseRecord:
        response = exchange.response

        text = decode_body(response, exchange.body)
        if settings.decode_escaped_unicode:
            text = decode_escaped_unicode(text)

        # httpx lower-cases names; restore them from what went over the wire.
        response_headers = normalize_header_names(
            collapse_headers(response.headers), raw_header_names(response.headers)
        )
        sent = response.request
        request_headers = normalize_header_names(
            dict(sent.headers),
            [*request.headers.keys(), *raw_header_names(sent.headers)],
        )

        return HttpResponseRecord(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            http_version=response.http_version,
            headers=response_headers,
            body=text,
            body_bytes=exchange.body,
            body_size=exchange.body_size,
            headers_size=exchange.headers_size,
            timings=exchange.timer.phases(),
            request=EchoedRequest(
                method=options.method,
                url=str(httpx.URL(request.url)),
                headers=request_headers,
                body=options.body,
                raw_source=request.raw_source,
                name=request.name,
            ),
        )
