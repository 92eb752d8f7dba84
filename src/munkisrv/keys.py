"""Private key decoding for the URL signer.

Decodes a PEM private key of unknown sub-format into a signing capability.
Formats are tried in a fixed order and the first one that parses wins:

1. PKCS#1 RSA ("RSA PRIVATE KEY")
2. PKCS#8 ("PRIVATE KEY"), accepted only for RSA, EC and Ed25519 keys
3. SEC1 EC ("EC PRIVATE KEY")

The PEM label on the input is not trusted; the DER body is tried against
each format regardless of how it was labelled.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from munkisrv.errors import (
    DisallowedKeyAlgorithmError,
    PEMDecodeError,
    UnsupportedKeyFormatError,
)

logger = logging.getLogger(__name__)

PKCS1_RSA = "RSA PRIVATE KEY"
PKCS8 = "PRIVATE KEY"
SEC1_EC = "EC PRIVATE KEY"

# Decode priority
KEY_FORMATS = (PKCS1_RSA, PKCS8, SEC1_EC)

_PEM_BLOCK = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----\r?\n(.*?)-----END \1-----",
    re.DOTALL,
)


@dataclass(frozen=True)
class RSAKeyMaterial:
    """RSA signing key. Signs with PKCS#1 v1.5 over SHA-1."""

    key: rsa.RSAPrivateKey
    algorithm = "RSA"

    def sign(self, payload: bytes) -> bytes:
        return self.key.sign(payload, padding.PKCS1v15(), hashes.SHA1())


@dataclass(frozen=True)
class ECKeyMaterial:
    """EC signing key. Signs with ECDSA over SHA-1."""

    key: ec.EllipticCurvePrivateKey
    algorithm = "EC"

    def sign(self, payload: bytes) -> bytes:
        return self.key.sign(payload, ec.ECDSA(hashes.SHA1()))


@dataclass(frozen=True)
class Ed25519KeyMaterial:
    """Ed25519 signing key."""

    key: ed25519.Ed25519PrivateKey
    algorithm = "Ed25519"

    def sign(self, payload: bytes) -> bytes:
        return self.key.sign(payload)


PrivateKeyMaterial = Union[RSAKeyMaterial, ECKeyMaterial, Ed25519KeyMaterial]


def _wrap_key(key) -> PrivateKeyMaterial:
    """Wrap a parsed key, or raise TypeError for other algorithms."""
    if isinstance(key, rsa.RSAPrivateKey):
        return RSAKeyMaterial(key)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return ECKeyMaterial(key)
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return Ed25519KeyMaterial(key)
    raise TypeError(type(key).__name__)


def decode_pem_block(data: bytes) -> Tuple[str, bytes]:
    """Decode the first PEM block in data.

    Encapsulated headers (RFC 1421 "Name: value" lines) are skipped.

    Returns:
        Tuple of (block_type, der_bytes)

    Raises:
        ValueError: If no well-formed PEM block is found
    """
    text = data.decode("ascii", errors="replace")
    match = _PEM_BLOCK.search(text)
    if not match:
        raise ValueError("no PEM block found")

    block_type, body = match.group(1), match.group(2)
    lines = body.splitlines()
    # Headers end at the first blank line
    if lines and ":" in lines[0]:
        while lines and lines[0].strip():
            lines.pop(0)
    b64 = "".join(line.strip() for line in lines)
    try:
        der = base64.b64decode(b64, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 in PEM body: {e}")
    return block_type, der


def _armor(der: bytes, block_type: str) -> bytes:
    b64 = base64.b64encode(der).decode("ascii")
    body = "\n".join(b64[i:i + 64] for i in range(0, len(b64), 64))
    return f"-----BEGIN {block_type}-----\n{body}\n-----END {block_type}-----\n".encode("ascii")


def _load(der: bytes, block_type: str):
    """Parse DER bytes as the given private key format, or return None."""
    try:
        return serialization.load_pem_private_key(_armor(der, block_type), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return None


def decode_private_key(pem_bytes: Union[bytes, str], label: str) -> PrivateKeyMaterial:
    """Decode a PEM private key into a signing key.

    Args:
        pem_bytes: PEM data (from config, environment or a file)
        label: Human-readable name for error messages

    Returns:
        RSAKeyMaterial, ECKeyMaterial or Ed25519KeyMaterial

    Raises:
        PEMDecodeError: If the input holds no PEM block
        DisallowedKeyAlgorithmError: If a PKCS#8 key is not RSA, EC or Ed25519
        UnsupportedKeyFormatError: If no supported format parses
    """
    if isinstance(pem_bytes, str):
        pem_bytes = pem_bytes.encode("utf-8")

    try:
        block_type, der = decode_pem_block(pem_bytes)
    except ValueError:
        raise PEMDecodeError(f"failed to decode {label}")

    for key_format in KEY_FORMATS:
        key = _load(der, key_format)
        if key is None:
            continue
        try:
            material = _wrap_key(key)
        except TypeError as e:
            raise DisallowedKeyAlgorithmError(
                f"unmarshaled PKCS8 {label} is not an RSA, ECDSA, or Ed25519 private key "
                f"(got {e})"
            )
        logger.debug("Decoded %s as %s (%s)", label, key_format, material.algorithm)
        return material

    raise UnsupportedKeyFormatError(f"failed to parse {label} of type {block_type}")
