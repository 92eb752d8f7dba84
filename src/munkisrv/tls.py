"""TLS policy validation and server context construction.

Validation and construction are separate steps. validate_tls_config() only
checks that required paths exist and that enum literals are recognized, so
it can run at config-load time before any socket is bound.
build_tls_context() loads the certificate, key and CA bundle and returns an
immutable TLSContext, or None when TLS is disabled.
"""

import enum
import logging
import os
import ssl
from dataclasses import dataclass, field
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from munkisrv.config import TLSConfig
from munkisrv.errors import ConfigBuildError, ConfigValidationError

logger = logging.getLogger(__name__)

TLS_VERSIONS = {
    "1.0": ssl.TLSVersion.TLSv1,
    "1.1": ssl.TLSVersion.TLSv1_1,
    "1.2": ssl.TLSVersion.TLSv1_2,
    "1.3": ssl.TLSVersion.TLSv1_3,
}
DEFAULT_MIN_VERSION = ssl.TLSVersion.TLSv1_2
DEFAULT_MAX_VERSION = ssl.TLSVersion.TLSv1_3


class ClientAuth(enum.Enum):
    """Client certificate policy.

    The ssl module has no mode that asks for a client certificate without
    verifying it, so "request" and "require" verify against the CA pool
    like their verifying counterparts.
    """

    NONE = "none"
    REQUEST = "request"
    REQUIRE = "require"
    VERIFY_IF_GIVEN = "verify-if-given"
    REQUIRE_AND_VERIFY = "require-and-verify"

    @property
    def verify_mode(self) -> ssl.VerifyMode:
        if self is ClientAuth.NONE:
            return ssl.CERT_NONE
        if self in (ClientAuth.REQUEST, ClientAuth.VERIFY_IF_GIVEN):
            return ssl.CERT_OPTIONAL
        return ssl.CERT_REQUIRED


CLIENT_AUTH_MODES = {mode.value: mode for mode in ClientAuth}


@dataclass(frozen=True)
class TLSContext:
    """Built server TLS context and the policy it was resolved to."""

    ssl_context: ssl.SSLContext = field(repr=False)
    min_version: ssl.TLSVersion
    max_version: ssl.TLSVersion
    client_auth: ClientAuth
    ca_count: int = 0

    def wrap_socket(self, sock):
        """Wrap a listening socket; handshakes run on first use per connection."""
        return self.ssl_context.wrap_socket(
            sock, server_side=True, do_handshake_on_connect=False,
        )


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def is_valid_tls_version(version: str) -> bool:
    return _normalize(version) in TLS_VERSIONS


def is_valid_client_auth(client_auth: str) -> bool:
    return _normalize(client_auth) in CLIENT_AUTH_MODES


def validate_tls_config(cfg: TLSConfig) -> None:
    """Pre-flight check of a TLS policy.

    Checks only path existence and enum literals; file contents are not
    parsed.

    Raises:
        ConfigValidationError: On the first problem found
    """
    if not cfg.enabled:
        return

    if not cfg.cert_file:
        raise ConfigValidationError("tls.cert_file is required when tls.enabled is true")
    if not cfg.key_file:
        raise ConfigValidationError("tls.key_file is required when tls.enabled is true")

    if not os.path.exists(cfg.cert_file):
        raise ConfigValidationError(f"tls.cert_file does not exist: {cfg.cert_file}")
    if not os.path.exists(cfg.key_file):
        raise ConfigValidationError(f"tls.key_file does not exist: {cfg.key_file}")
    if cfg.ca_file and not os.path.exists(cfg.ca_file):
        raise ConfigValidationError(f"tls.ca_file does not exist: {cfg.ca_file}")

    if cfg.min_version and not is_valid_tls_version(cfg.min_version):
        raise ConfigValidationError(f"invalid tls.min_version: {cfg.min_version}")
    if cfg.max_version and not is_valid_tls_version(cfg.max_version):
        raise ConfigValidationError(f"invalid tls.max_version: {cfg.max_version}")
    min_version = TLS_VERSIONS.get(_normalize(cfg.min_version), DEFAULT_MIN_VERSION)
    max_version = TLS_VERSIONS.get(_normalize(cfg.max_version), DEFAULT_MAX_VERSION)
    if min_version > max_version:
        raise ConfigValidationError(
            f"tls.min_version {min_version.name} is above tls.max_version {max_version.name}"
        )

    if cfg.client_auth and not is_valid_client_auth(cfg.client_auth):
        raise ConfigValidationError(f"invalid tls.client_auth: {cfg.client_auth}")
    if _normalize(cfg.client_auth) not in ("", "none") and not cfg.ca_file:
        raise ConfigValidationError(
            f"tls.ca_file is required when tls.client_auth is {cfg.client_auth}"
        )


def resolve_tls_version(version: str, default: ssl.TLSVersion) -> ssl.TLSVersion:
    """Map a version literal to ssl.TLSVersion; empty means default.

    Raises:
        ConfigBuildError: If the literal is not recognized
    """
    if not _normalize(version):
        return default
    try:
        return TLS_VERSIONS[_normalize(version)]
    except KeyError:
        raise ConfigBuildError(f"unrecognized TLS version: {version}")


def resolve_client_auth(client_auth: str) -> ClientAuth:
    """Map a client auth literal to ClientAuth; empty means NONE.

    Raises:
        ConfigBuildError: If the literal is not recognized
    """
    if not _normalize(client_auth):
        return ClientAuth.NONE
    try:
        return CLIENT_AUTH_MODES[_normalize(client_auth)]
    except KeyError:
        raise ConfigBuildError(f"unrecognized client auth type: {client_auth}")


def _load_ca_bundle(ca_file: str) -> tuple:
    """Read and parse a PEM CA bundle.

    Text outside the certificate blocks (issuer comments, possibly
    non-ASCII) is ignored.

    Returns:
        Tuple of (concatenated_der, certificate_count)
    """
    try:
        with open(ca_file, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ConfigBuildError(f"failed to read CA certificate: {e}")

    try:
        certs = x509.load_pem_x509_certificates(data)
    except ValueError:
        raise ConfigBuildError(f"failed to parse CA certificate: {ca_file}")
    der = b"".join(cert.public_bytes(serialization.Encoding.DER) for cert in certs)
    return der, len(certs)


def build_tls_context(cfg: TLSConfig) -> Optional[TLSContext]:
    """Build the server TLS context for a policy.

    Args:
        cfg: TLS policy

    Returns:
        TLSContext, or None when TLS is disabled (serve plain HTTP)

    Raises:
        ConfigBuildError: If the cert/key pair or CA bundle cannot be
            loaded, or a literal is unrecognized
    """
    if not cfg.enabled:
        return None

    min_version = resolve_tls_version(cfg.min_version, DEFAULT_MIN_VERSION)
    max_version = resolve_tls_version(cfg.max_version, DEFAULT_MAX_VERSION)
    if min_version > max_version:
        raise ConfigBuildError(
            f"minimum TLS version {min_version.name} is above maximum {max_version.name}"
        )
    client_auth = resolve_client_auth(cfg.client_auth)
    if client_auth is not ClientAuth.NONE and not cfg.ca_file:
        raise ConfigBuildError(f"tls.client_auth {client_auth.value} requires tls.ca_file")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(certfile=cfg.cert_file, keyfile=cfg.key_file)
    except (OSError, ssl.SSLError) as e:
        raise ConfigBuildError(f"failed to load server certificate: {e}")

    context.minimum_version = min_version
    context.maximum_version = max_version

    ca_count = 0
    if cfg.ca_file:
        ca_der, ca_count = _load_ca_bundle(cfg.ca_file)
        try:
            context.load_verify_locations(cadata=ca_der)
        except ssl.SSLError as e:
            raise ConfigBuildError(f"failed to parse CA certificate: {e}")
        context.verify_mode = client_auth.verify_mode

    logger.info(
        "TLS enabled: min=%s max=%s client_auth=%s ca_certs=%d",
        min_version.name, max_version.name, client_auth.value, ca_count,
    )
    return TLSContext(
        ssl_context=context,
        min_version=min_version,
        max_version=max_version,
        client_auth=client_auth,
        ca_count=ca_count,
    )


def tls_info(cfg: TLSConfig) -> dict:
    """Summarize a TLS policy for display."""
    info = {"enabled": cfg.enabled}
    if cfg.enabled:
        info.update({
            "cert_file": cfg.cert_file,
            "key_file": cfg.key_file,
            "ca_file": cfg.ca_file,
            "client_auth": cfg.client_auth,
            "min_version": cfg.min_version,
            "max_version": cfg.max_version,
        })
    return info
