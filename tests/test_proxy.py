"""Tests for proxy policy resolution.

Tests cover:
- Exclusion matching with and without explicit ports
- Case-insensitive, duplicate-tolerant exclusion entries
- Route scheme chosen by the target URL
- Transport construction for the mounted route
"""

import httpx
import pytest

from http_runner.proxy import ProxyRoute, resolve_proxy_route, should_bypass_proxy

PROXY = "http://proxy.local:3128"


class TestShouldBypassProxy:
    @pytest.mark.parametrize(
        "url, exclusions, expected",
        [
            # No explicit port: only a bare host entry matches
            ("http://internal.corp/x", ["internal.corp"], True),
            ("http://internal.corp/x", ["internal.corp:80"], False),
            ("https://internal.corp/x", ["internal.corp:443"], False),
            # Explicit port: bare host or same port matches
            ("http://internal.corp:8080/x", ["internal.corp"], True),
            ("http://internal.corp:8080/x", ["internal.corp:8080"], True),
            ("http://internal.corp:8080/x", ["internal.corp:9090"], False),
            # Different host never matches
            ("http://other.corp/x", ["internal.corp"], False),
            ("http://other.corp:8080/x", ["internal.corp:8080"], False),
        ],
    )
    def test_exclusion_matrix(self, url, exclusions, expected):
        assert should_bypass_proxy(url, exclusions) is expected

    def test_case_insensitive(self):
        assert should_bypass_proxy("http://Internal.Corp/x", ["INTERNAL.corp"])

    def test_duplicates_tolerated(self):
        assert should_bypass_proxy("http://a.corp/", ["a.corp", "A.CORP", "a.corp"])

    def test_no_exclusions(self):
        assert not should_bypass_proxy("http://a.corp/", [])
        assert not should_bypass_proxy("http://a.corp/", None)


class TestResolveProxyRoute:
    def test_no_proxy_configured(self):
        assert resolve_proxy_route("http://a.corp/", None) is None
        assert resolve_proxy_route("http://a.corp/", "") is None

    def test_excluded_host_goes_direct(self):
        assert resolve_proxy_route("http://a.corp/", PROXY, ["a.corp"]) is None

    def test_http_target_mounts_http(self):
        route = resolve_proxy_route("http://a.corp/", PROXY)
        assert route == ProxyRoute(scheme="http", url=PROXY)
        assert route.mount_pattern == "http://"

    def test_https_target_mounts_https(self):
        route = resolve_proxy_route("https://a.corp/", PROXY)
        assert route.scheme == "https"
        assert route.mount_pattern == "https://"

    def test_scheme_follows_target_not_proxy(self):
        route = resolve_proxy_route("https://a.corp/", "http://proxy.local:8080")
        assert route.scheme == "https"
        assert route.url == "http://proxy.local:8080"

    def test_transport_is_proxy_transport(self):
        route = resolve_proxy_route("http://a.corp/", PROXY)
        transport = route.transport(verify=False)
        assert isinstance(transport, httpx.AsyncHTTPTransport)
