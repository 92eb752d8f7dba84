"""Shared pytest fixtures for munkisrv tests."""

import datetime
import sys
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed25519, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


def _pem(key, fmt) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=fmt,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def ed25519_key():
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture(scope="session")
def rsa_pkcs1_pem(rsa_key) -> bytes:
    """RSA key as "RSA PRIVATE KEY"."""
    return _pem(rsa_key, serialization.PrivateFormat.TraditionalOpenSSL)


@pytest.fixture(scope="session")
def rsa_pkcs8_pem(rsa_key) -> bytes:
    return _pem(rsa_key, serialization.PrivateFormat.PKCS8)


@pytest.fixture(scope="session")
def ec_sec1_pem(ec_key) -> bytes:
    """EC key as "EC PRIVATE KEY"."""
    return _pem(ec_key, serialization.PrivateFormat.TraditionalOpenSSL)


@pytest.fixture(scope="session")
def ec_pkcs8_pem(ec_key) -> bytes:
    return _pem(ec_key, serialization.PrivateFormat.PKCS8)


@pytest.fixture(scope="session")
def ed25519_pkcs8_pem(ed25519_key) -> bytes:
    return _pem(ed25519_key, serialization.PrivateFormat.PKCS8)


@pytest.fixture(scope="session")
def dsa_pkcs8_pem() -> bytes:
    key = dsa.generate_private_key(key_size=2048)
    return _pem(key, serialization.PrivateFormat.PKCS8)


def _write_cert(path: Path, cert: x509.Certificate):
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def _make_cert(common_name: str, key, issuer_name=None, issuer_key=None, is_ca=False):
    now = datetime.datetime.now(datetime.timezone.utc)
    subject = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Organization"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name or subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key((issuer_key or key).public_key()),
            critical=False,
        )
    )
    if is_ca:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
    else:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName("localhost")]), critical=False,
        ).add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]),
            critical=False,
        )
    return builder.sign(issuer_key or key, hashes.SHA256())


@pytest.fixture
def tls_files(tmp_path, rsa_key):
    """Server cert/key pair, CA bundle and a CA-issued client cert on disk.

    Returns:
        Dict with cert_file, key_file, ca_file, client_cert, client_key paths
    """
    tls_dir = tmp_path / "tls"
    tls_dir.mkdir()

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = _make_cert("test-ca", ca_key, is_ca=True)
    _write_cert(tls_dir / "ca.crt", ca_cert)

    server_cert = _make_cert("localhost", rsa_key)
    _write_cert(tls_dir / "server.crt", server_cert)
    (tls_dir / "server.key").write_bytes(
        _pem(rsa_key, serialization.PrivateFormat.TraditionalOpenSSL)
    )

    client_key = ec.generate_private_key(ec.SECP256R1())
    client_cert = _make_cert("client", client_key, issuer_name=ca_cert.subject, issuer_key=ca_key)
    _write_cert(tls_dir / "client.crt", client_cert)
    (tls_dir / "client.key").write_bytes(_pem(client_key, serialization.PrivateFormat.PKCS8))

    return {
        "cert_file": str(tls_dir / "server.crt"),
        "key_file": str(tls_dir / "server.key"),
        "ca_file": str(tls_dir / "ca.crt"),
        "client_cert": str(tls_dir / "client.crt"),
        "client_key": str(tls_dir / "client.key"),
    }


@pytest.fixture
def repo_dir(tmp_path):
    """Minimal munki repo on disk."""
    root = tmp_path / "repo"
    for d in ["catalogs", "manifests", "icons", "pkgs/apps"]:
        (root / d).mkdir(parents=True)
    (root / "catalogs" / "all").write_text("<plist version=\"1.0\"><array/></plist>\n")
    (root / "manifests" / "site_default").write_text("<plist version=\"1.0\"><dict/></plist>\n")
    (root / "icons" / "Firefox.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    return root
