"""Transport options: everything needed to issue one HTTP call.

RequestOptionsBuilder turns a RequestDescriptor plus EngineSettings into a
TransportOptions value. Authentication, client certificate, proxy and cookie
jar are all decided here; the executor only follows the options.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from http.cookiejar import CookieJar
from typing import Any, Awaitable, Callable

import httpx

from http_runner.auth import AuthenticationDispatcher
from http_runner.certificates import CertificateMaterial, CertificateResolver
from http_runner.cookies import CookieStore
from http_runner.models import EngineSettings, RequestDescriptor
from http_runner.proxy import ProxyRoute, resolve_proxy_route

logger = logging.getLogger(__name__)

# Hooks run at fixed lifecycle points. A before-send hook receives the built
# request and returns the request to send (usually the same object, with
# headers added or replaced). An after-response hook receives the response and
# a resend function and returns the response to keep.
BeforeSendHook = Callable[[httpx.Request], Awaitable[httpx.Request]]
Resend = Callable[[httpx.Request], Awaitable[httpx.Response]]
AfterResponseHook = Callable[[httpx.Response, Resend], Awaitable[httpx.Response]]


@dataclass
class TransportOptions:
    """Transport-ready description of one request.

    ``headers`` is a private copy of the descriptor's headers and may be
    mutated freely (e.g. by the authentication dispatcher).
    """

    method: str
    url: str
    headers: dict[str, str]
    body: bytes | str | None = None
    decompress: bool = True
    follow_redirects: bool = True
    timeout_ms: int | None = None
    retry_limit: int = 0
    verify_peer: bool = False
    certificate: CertificateMaterial | None = None
    proxy: ProxyRoute | None = None
    cookie_jar: CookieJar | None = None
    username: str | None = None
    password: str | None = None
    before_send: list[BeforeSendHook] = field(default_factory=list)
    after_response: list[AfterResponseHook] = field(default_factory=list)

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_ms is None or self.timeout_ms <= 0:
            return None
        return self.timeout_ms / 1000

    @property
    def content(self) -> bytes | None:
        if self.body is None:
            return None
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return self.body

    def basic_auth(self) -> httpx.BasicAuth | None:
        if self.username is None:
            return None
        return httpx.BasicAuth(self.username, self.password or "")

    def verify(self) -> Any:
        """Value for httpx's ``verify``: an SSL context carrying client material, or a bool."""
        if self.certificate is not None and not self.certificate.is_empty:
            return self.certificate.ssl_context()
        return self.verify_peer

    def client_kwargs(self) -> dict[str, Any]:
        """Build kwargs for httpx.AsyncClient.

        The whole-request timeout is enforced by the executor, so httpx's own
        timeouts are disabled.
        """
        verify = self.verify()
        kwargs: dict[str, Any] = {
            "follow_redirects": self.follow_redirects,
            "verify": verify,
            "timeout": None,
            "trust_env": False,
        }

        if self.cookie_jar is not None:
            kwargs["cookies"] = self.cookie_jar

        if self.proxy is not None:
            kwargs["mounts"] = {
                self.proxy.mount_pattern: self.proxy.transport(
                    verify=verify, retries=self.retry_limit
                ),
            }

        return kwargs


class RequestOptionsBuilder:
    """Composes TransportOptions from a descriptor and settings."""

    def __init__(
        self,
        authentication: AuthenticationDispatcher,
        certificates: CertificateResolver,
        cookie_store: CookieStore | None = None,
    ) -> None:
        self._authentication = authentication
        self._certificates = certificates
        self._cookie_store = cookie_store

    async def build(self, request: RequestDescriptor, settings: EngineSettings) -> TransportOptions:
        """Build options for one request.

        Raises:
            AuthenticationError: If a delegated sign-in (Cognito) fails.
        """
        options = TransportOptions(
            method=request.method,
            url=request.url,
            # Shallow copy: the descriptor may be reused for a rerun.
            headers=dict(request.headers),
            body=request.body,
            follow_redirects=settings.follow_redirects,
        )

        if settings.timeout_ms > 0:
            options.timeout_ms = settings.timeout_ms

        if settings.remember_cookies and self._cookie_store is not None:
            options.cookie_jar = self._cookie_store.jar

        await self._authentication.apply(options)

        options.certificate = self._certificates.resolve(
            request.url,
            settings.certificates,
            workspace_root=settings.workspace_root,
            source_file=request.source_file,
        )

        options.proxy = resolve_proxy_route(
            request.url, settings.proxy, settings.exclude_hosts_for_proxy
        )

        logger.debug(
            "Built options for %s %s (proxy=%s, certificate=%s, hooks=%d/%d)",
            options.method,
            options.url,
            options.proxy.url if options.proxy else None,
            options.certificate is not None,
            len(options.before_send),
            len(options.after_response),
        )
        return options
