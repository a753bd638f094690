"""Tests for client certificate resolution.

Tests cover:
- Host lookup key (default ports dropped, explicit ports kept)
- Path resolution order: absolute, workspace root, declaring file
- Missing files produce a warning and are treated as absent
- SSL context construction from PEM files and PKCS#12 bundles
"""

import datetime
import ssl
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    pkcs12,
)
from cryptography.x509.oid import NameOID

from http_runner.certificates import (
    CertificateMaterial,
    CertificateResolver,
    certificate_host_key,
    resolve_certificate_path,
)
from http_runner.models import CertificateSpec
from http_runner.notify import WarningChannel
from tests.conftest import WarningRecorder


@pytest.fixture(scope="module")
def key_and_cert():
    """Self-signed RSA key and certificate."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "http-runner test")])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return key, cert


@pytest.fixture
def recorder() -> WarningRecorder:
    return WarningRecorder()


@pytest.fixture
def resolver(recorder: WarningRecorder) -> CertificateResolver:
    return CertificateResolver(WarningChannel(recorder))


class TestCertificateHostKey:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://api.example.com/x", "api.example.com"),
            ("https://api.example.com:443/x", "api.example.com"),
            ("http://api.example.com:80/x", "api.example.com"),
            ("https://api.example.com:8443/x", "api.example.com:8443"),
            ("http://API.Example.com:8080/", "api.example.com:8080"),
        ],
    )
    def test_host_key(self, url, expected):
        assert certificate_host_key(url) == expected


class TestResolveCertificatePath:
    def test_absolute_path_passes_through(self, tmp_path: Path):
        absolute = tmp_path / "client.pem"
        assert resolve_certificate_path(str(absolute), "/ignored", "/ignored/req.http") == absolute

    def test_relative_to_workspace_root(self, tmp_path: Path):
        result = resolve_certificate_path("certs/client.pem", tmp_path, tmp_path / "a" / "req.http")
        assert result == tmp_path / "certs" / "client.pem"

    def test_relative_to_declaring_file(self, tmp_path: Path):
        result = resolve_certificate_path("client.pem", None, tmp_path / "reqs" / "req.http")
        assert result == tmp_path / "reqs" / "client.pem"

    def test_no_base_available(self):
        assert resolve_certificate_path("client.pem", None, None) is None


class TestCertificateResolver:
    def test_unconfigured_host(self, resolver: CertificateResolver):
        assert resolver.resolve("https://a.example.com/", {}) is None

    def test_reads_configured_files(self, resolver: CertificateResolver, tmp_path: Path):
        (tmp_path / "client.crt").write_bytes(b"CERT")
        (tmp_path / "client.key").write_bytes(b"KEY")
        certificates = {
            "a.example.com": CertificateSpec(cert="client.crt", key="client.key", passphrase="pw")
        }

        material = resolver.resolve(
            "https://a.example.com/", certificates, workspace_root=str(tmp_path)
        )

        assert material == CertificateMaterial(cert=b"CERT", key=b"KEY", passphrase="pw")

    def test_host_match_is_case_insensitive(self, resolver: CertificateResolver, tmp_path: Path):
        (tmp_path / "client.pfx").write_bytes(b"PFX")
        certificates = {"A.Example.COM": CertificateSpec(pfx=str(tmp_path / "client.pfx"))}

        material = resolver.resolve("https://a.example.com/", certificates)

        assert material is not None
        assert material.pfx == b"PFX"

    def test_port_specific_entry(self, resolver: CertificateResolver, tmp_path: Path):
        (tmp_path / "c.pem").write_bytes(b"C")
        certificates = {"a.example.com:8443": CertificateSpec(cert=str(tmp_path / "c.pem"))}

        assert resolver.resolve("https://a.example.com/", certificates) is None
        assert resolver.resolve("https://a.example.com:8443/", certificates).cert == b"C"

    def test_missing_file_warns_and_is_absent(
        self, resolver: CertificateResolver, recorder: WarningRecorder, tmp_path: Path
    ):
        (tmp_path / "client.key").write_bytes(b"KEY")
        certificates = {
            "a.example.com": CertificateSpec(cert="missing.crt", key="client.key")
        }

        material = resolver.resolve(
            "https://a.example.com/", certificates, source_file=str(tmp_path / "req.http")
        )

        assert material.cert is None
        assert material.key == b"KEY"
        assert recorder.messages == [
            "Certificate path missing.crt doesn't exist, please make sure it exists."
        ]


class TestCertificateMaterialSslContext:
    def test_empty(self):
        assert CertificateMaterial().is_empty
        assert not CertificateMaterial(key=b"k").is_empty

    def test_pem_cert_and_key(self, key_and_cert):
        key, cert = key_and_cert
        material = CertificateMaterial(
            cert=cert.public_bytes(Encoding.PEM),
            key=key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()),
        )

        context = material.ssl_context()

        assert isinstance(context, ssl.SSLContext)
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    def test_encrypted_pem_key_with_passphrase(self, key_and_cert):
        key, cert = key_and_cert
        material = CertificateMaterial(
            cert=cert.public_bytes(Encoding.PEM),
            key=key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, BestAvailableEncryption(b"secret")
            ),
            passphrase="secret",
        )

        assert isinstance(material.ssl_context(), ssl.SSLContext)

    def test_pfx_bundle(self, key_and_cert):
        key, cert = key_and_cert
        bundle = pkcs12.serialize_key_and_certificates(
            b"client", key, cert, None, BestAvailableEncryption(b"secret")
        )
        material = CertificateMaterial(pfx=bundle, passphrase="secret")

        assert isinstance(material.ssl_context(), ssl.SSLContext)

    def test_pfx_wrong_passphrase_raises(self, key_and_cert):
        key, cert = key_and_cert
        bundle = pkcs12.serialize_key_and_certificates(
            b"client", key, cert, None, BestAvailableEncryption(b"secret")
        )

        with pytest.raises(ValueError):
            CertificateMaterial(pfx=bundle, passphrase="wrong").ssl_context()
