"""Per-host TLS client certificates.

Paths in a CertificateSpec are resolved in this order:
1. absolute path;
2. relative to the workspace root, when one is configured;
3. relative to the directory of the file that declared the request.

A missing file produces a warning and is treated as absent; it never fails
the request. cert, key and pfx are resolved independently.
"""

from __future__ import annotations

import logging
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)

from http_runner.models import CertificateSpec
from http_runner.notify import WarningChannel

logger = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class CertificateMaterial:
    """Client certificate bytes read from disk."""

    cert: bytes | None = None
    key: bytes | None = None
    pfx: bytes | None = None
    passphrase: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.cert is None and self.key is None and self.pfx is None

    def ssl_context(self) -> ssl.SSLContext:
        """Build a client SSL context carrying this material.

        Server certificates are not verified: this is a developer tool and the
        operator chose the target explicitly.
        """
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        password = self.passphrase.encode("utf-8") if self.passphrase else None

        # ssl only loads chains from files, so stage the bytes in a temp dir.
        with tempfile.TemporaryDirectory(prefix="http-runner-cert-") as tmp:
            tmp_dir = Path(tmp)
            if self.pfx is not None:
                cert_pem, key_pem = _pfx_to_pem(self.pfx, password)
                cert_file = tmp_dir / "pfx-cert.pem"
                pfx_key_file = tmp_dir / "pfx-key.pem"
                cert_file.write_bytes(cert_pem)
                pfx_key_file.write_bytes(key_pem)
                context.load_cert_chain(str(cert_file), str(pfx_key_file))
            elif self.cert is not None:
                cert_file = tmp_dir / "cert.pem"
                cert_file.write_bytes(self.cert)
                key_file: str | None = None
                if self.key is not None:
                    key_path = tmp_dir / "key.pem"
                    key_path.write_bytes(self.key)
                    key_file = str(key_path)
                context.load_cert_chain(str(cert_file), key_file, password=password)
            elif self.key is not None:
                logger.debug("Client key configured without a certificate; ignoring key")

        return context


def _pfx_to_pem(pfx: bytes, password: bytes | None) -> tuple[bytes, bytes]:
    key, certificate, additional = pkcs12.load_key_and_certificates(pfx, password)
    if key is None or certificate is None:
        raise ValueError("PKCS#12 bundle must contain a private key and a certificate")

    chain = [certificate, *(additional or [])]
    cert_pem = b"".join(cert.public_bytes(Encoding.PEM) for cert in chain)
    key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return cert_pem, key_pem


def certificate_host_key(url: str) -> str | None:
    """Host lookup key for ``url``: hostname, plus ``:port`` for a non-default port."""
    parts = urlsplit(url)
    if not parts.hostname:
        return None
    host = parts.hostname.lower()
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}:{port}"
    return host


class CertificateResolver:
    """Looks up and reads client certificate material for a request URL."""

    def __init__(self, warnings: WarningChannel | None = None) -> None:
        self._warnings = warnings or WarningChannel()

    def resolve(
        self,
        url: str,
        certificates: dict[str, CertificateSpec],
        *,
        workspace_root: str | Path | None = None,
        source_file: str | Path | None = None,
    ) -> CertificateMaterial | None:
        """Return certificate material for the URL's host, or None if unconfigured."""
        host = certificate_host_key(url)
        if host is None:
            return None

        spec = _lookup(certificates, host)
        if spec is None:
            return None

        logger.debug("Using client certificate configured for %s", host)
        return CertificateMaterial(
            cert=self._read(spec.cert, workspace_root, source_file),
            key=self._read(spec.key, workspace_root, source_file),
            pfx=self._read(spec.pfx, workspace_root, source_file),
            passphrase=spec.passphrase,
        )

    def _read(
        self,
        path_ref: str | None,
        workspace_root: str | Path | None,
        source_file: str | Path | None,
    ) -> bytes | None:
        if path_ref is None:
            return None

        path = resolve_certificate_path(path_ref, workspace_root, source_file)
        if path is None:
            logger.debug("No base directory to resolve certificate path %s", path_ref)
            return None

        if not path.is_file():
            self._warnings.warn(
                f"Certificate path {path_ref} doesn't exist, please make sure it exists."
            )
            return None

        return path.read_bytes()


def resolve_certificate_path(
    path_ref: str,
    workspace_root: str | Path | None,
    source_file: str | Path | None,
) -> Path | None:
    """Resolve a certificate path. Absolute paths pass through.

    Returns None when the path is relative and neither base is known.
    """
    path = Path(path_ref).expanduser()
    if path.is_absolute():
        return path
    if workspace_root:
        return Path(workspace_root) / path
    if source_file:
        return Path(source_file).parent / path
    return None


def _lookup(certificates: dict[str, CertificateSpec], host: str) -> CertificateSpec | None:
    if host in certificates:
        return certificates[host]
    for key, spec in certificates.items():
        if key.lower() == host:
            return spec
    return None
