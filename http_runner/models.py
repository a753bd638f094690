"""Data models for http-runner.

All models use Pydantic v2. Requests come in fully resolved (no template
placeholders); responses go out as HttpResponseRecord.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Self
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_COOKIE_FILE = Path.home() / ".http-runner" / "cookies.txt"

HTTP_METHODS = frozenset(
    {"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE", "CONNECT"}
)


# =============================================================================
# Request Models
# =============================================================================


class RequestDescriptor(BaseModel):
    """One fully-resolved request handed to the engine.

    Header names are case-insensitive: when the same name appears with
    different casing the last entry wins, keeping its casing. The engine never
    mutates a descriptor; any header stripping happens on a copy.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: str = Field(description="HTTP method (GET, POST, etc.)")
    url: str = Field(description="Absolute http(s) URL")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: bytes | str | None = Field(default=None, description="Request body, if any")
    raw_source: str | None = Field(
        default=None, description="Original request text, kept for diagnostics"
    )
    name: str | None = Field(default=None, description="Display name")
    source_file: str | None = Field(
        default=None, description="File that declared the request (for relative cert paths)"
    )

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        method = v.strip().upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method: {v!r}")
        return method

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
            raise ValueError(f"URL must be absolute http(s): {v!r}")
        try:
            # .port raises ValueError for a malformed port
            _ = parts.port
        except ValueError as e:
            raise ValueError(f"URL has an invalid port: {v!r}") from e
        return v

    @field_validator("headers")
    @classmethod
    def fold_header_names(cls, v: dict[str, str]) -> dict[str, str]:
        folded: dict[str, tuple[str, str]] = {}
        for name, value in v.items():
            folded[name.lower()] = (name, value)
        return {name: value for name, value in folded.values()}


# =============================================================================
# Settings Models
# =============================================================================


class CertificateSpec(BaseModel):
    """Client certificate paths for one host.

    Paths may be absolute, relative to the workspace root, or relative to the
    file that declared the request.
    """

    model_config = ConfigDict(extra="forbid")

    cert: str | None = Field(default=None, description="PEM certificate path")
    key: str | None = Field(default=None, description="PEM private key path")
    pfx: str | None = Field(default=None, description="PKCS#12 bundle path")
    passphrase: str | None = Field(default=None, description="Key or bundle passphrase")


class EngineSettings(BaseModel):
    """Effective settings for request execution (defaults already applied)."""

    model_config = ConfigDict(extra="forbid")

    timeout_ms: int = Field(default=0, ge=0, description="Whole-request timeout; 0 = unbounded")
    follow_redirects: bool = Field(default=True, description="Follow 3xx redirects")
    decode_escaped_unicode: bool = Field(
        default=False, description="Unescape \\uXXXX sequences in response bodies"
    )
    remember_cookies: bool = Field(
        default=True, description="Persist cookies across requests"
    )
    proxy: str | None = Field(default=None, description="Proxy URL")
    exclude_hosts_for_proxy: list[str] = Field(
        default_factory=list, description="Hosts (optionally host:port) that bypass the proxy"
    )
    certificates: dict[str, CertificateSpec] = Field(
        default_factory=dict, description="Host (optionally host:port) -> client certificate"
    )
    workspace_root: str | None = Field(
        default=None, description="Root for workspace-relative certificate paths"
    )
    cookie_file: str | None = Field(
        default=None, description="Cookie jar file; defaults to ~/.http-runner/cookies.txt"
    )

    @property
    def cookie_path(self) -> Path:
        if self.cookie_file:
            return Path(self.cookie_file).expanduser()
        return DEFAULT_COOKIE_FILE


# =============================================================================
# Response Models
# =============================================================================


class TimingPhases(BaseModel):
    """Durations in milliseconds; None when the transport did not report a phase.

    httpcore resolves names inside the TCP connect, so dns_ms is normally None
    and the lookup time is part of tcp_ms.
    """

    model_config = ConfigDict(extra="forbid")

    dns_ms: float | None = None
    tcp_ms: float | None = None
    tls_ms: float | None = None
    first_byte_ms: float | None = None
    download_ms: float | None = None
    total_ms: float | None = None


class EchoedRequest(BaseModel):
    """The request as effectively sent, for display and history."""

    model_config = ConfigDict(extra="forbid")

    method: str = Field(description="HTTP method")
    url: str = Field(description="Encoded request URL")
    headers: dict[str, str] = Field(default_factory=dict, description="Headers with original casing")
    body: bytes | str | None = Field(default=None, description="Body as sent")
    raw_source: str | None = Field(default=None, description="Original request text")
    name: str | None = Field(default=None, description="Display name")


class HttpResponseRecord(BaseModel):
    """One measured, decoded response.

    Header names keep the casing the server sent. A header repeated on the
    wire (e.g. Set-Cookie) is a list of values.
    """

    model_config = ConfigDict(extra="forbid")

    status_code: int = Field(description="HTTP status code")
    status_text: str = Field(default="", description="Reason phrase")
    http_version: str = Field(default="HTTP/1.1", description="Protocol version")
    headers: dict[str, str | list[str]] = Field(
        default_factory=dict, description="Response headers with original casing"
    )
    body: str = Field(default="", description="Decoded body text")
    body_bytes: bytes = Field(default=b"", description="Raw buffered body")
    body_size: int = Field(default=0, ge=0, description="Received body bytes")
    headers_size: int = Field(default=0, ge=0, description="Approximate header bytes")
    timings: TimingPhases = Field(default_factory=TimingPhases, description="Timing phases")
    request: EchoedRequest = Field(description="Effective outgoing request")

    @model_validator(mode="after")
    def check_body_consistency(self) -> Self:
        if self.body and not self.body_bytes:
            raise ValueError("decoded body present without raw bytes")
        return self

    @property
    def content_type(self) -> str | None:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value if isinstance(value, str) else value[0]
        return None

    def header(self, name: str) -> Any:
        """Case-insensitive header lookup."""
        lower = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lower:
                return value
        return None
