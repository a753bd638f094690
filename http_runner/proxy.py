"""Proxy policy: decide whether a request goes through the configured proxy.

The proxy settings are the only source; HTTP_PROXY/HTTPS_PROXY environment
variables are not consulted (clients are created with trust_env=False).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyRoute:
    """Proxy to use for one request.

    ``scheme`` is the target URL's scheme, not the proxy URL's: it picks which
    outgoing traffic (plain or TLS) is mounted on the proxy transport.
    """

    scheme: str
    url: str

    @property
    def mount_pattern(self) -> str:
        return f"{self.scheme}://"

    def transport(self, *, verify: object, retries: int = 0) -> httpx.AsyncHTTPTransport:
        return httpx.AsyncHTTPTransport(proxy=self.url, verify=verify, retries=retries)


def should_bypass_proxy(url: str, exclude_hosts: list[str] | None) -> bool:
    """Return True when ``url`` matches an exclusion entry.

    Entries are ``host`` or ``host:port``, compared case-insensitively:
    - a request without an explicit port is excluded only by a bare ``host``
      entry equal to its hostname;
    - a request with an explicit port is excluded by ``host`` or by
      ``host:port`` with the same port.
    """
    if not exclude_hosts:
        return False

    parts = urlsplit(url)
    hostname = (parts.hostname or "").lower()
    port = str(parts.port) if parts.port is not None else None

    entries = list(dict.fromkeys(entry.lower() for entry in exclude_hosts))
    for entry in entries:
        entry_parts = entry.split(":")
        if port is None:
            if len(entry_parts) == 1 and entry_parts[0] == hostname:
                return True
        else:
            entry_host = entry_parts[0]
            entry_port = entry_parts[1] if len(entry_parts) > 1 else ""
            if entry_host == hostname and (not entry_port or entry_port == port):
                return True

    return False


def resolve_proxy_route(
    url: str,
    proxy: str | None,
    exclude_hosts: list[str] | None = None,
) -> ProxyRoute | None:
    """Return the proxy route for ``url``, or None for a direct connection."""
    if not proxy:
        return None

    if should_bypass_proxy(url, exclude_hosts):
        logger.debug("resolve_proxy_route: %s excluded from proxy", url)
        return None

    scheme = "http" if url.lower().startswith("http:") else "https"
    logger.debug("resolve_proxy_route: %s via %s (%s traffic)", url, proxy, scheme)
    return ProxyRoute(scheme=scheme, url=proxy)
