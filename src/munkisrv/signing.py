"""CloudFront signed URL generation.

Package downloads are not served by munkisrv itself. Requests under
/repo/pkgs/ are redirected to the CloudFront distribution with a canned
policy signed URL that expires one hour after it was issued.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from botocore.signers import CloudFrontSigner

from munkisrv.errors import InvalidPackagePathError, SignError
from munkisrv.keys import Ed25519KeyMaterial, PrivateKeyMaterial, RSAKeyMaterial

logger = logging.getLogger(__name__)

DEFAULT_URL_TTL = timedelta(hours=1)
PKGS_PREFIX = "/repo/pkgs/"
ED25519_UNSUPPORTED = "Ed25519 keys cannot sign CloudFront URLs (SHA-1 digest required)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_absolute_url(url: str) -> None:
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise SignError(f"invalid URL {url!r}: {e}")
    if not parts.scheme or not parts.netloc:
        raise SignError(f"URL is not absolute: {url!r}")


def sign_url(
    target_url: str,
    key_id: str,
    key: PrivateKeyMaterial,
    expires: datetime,
    now: Optional[datetime] = None,
) -> str:
    """Sign a URL with a CloudFront canned policy.

    The policy binds the exact URL and the expiry instant; no start time,
    IP restriction or wildcard resource is included.

    Args:
        target_url: Absolute URL to sign
        key_id: CloudFront public key id (Key-Pair-Id)
        key: Decoded signing key
        expires: Expiry instant (naive datetimes are treated as UTC)
        now: Signing instant (default: current time)

    Returns:
        target_url with Expires, Signature and Key-Pair-Id query parameters

    Raises:
        SignError: If the URL is not absolute, the expiry is not in the
            future, the key is Ed25519 or the key fails to sign
    """
    _check_absolute_url(target_url)
    if not key_id:
        raise SignError("key id is required")
    if isinstance(key, Ed25519KeyMaterial):
        raise SignError(ED25519_UNSUPPORTED)

    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    now = now or _utcnow()
    if expires <= now:
        raise SignError(f"expiry {expires.isoformat()} is not after {now.isoformat()}")

    signer = CloudFrontSigner(key_id, key.sign)
    try:
        return signer.generate_presigned_url(target_url, date_less_than=expires)
    except Exception as e:
        raise SignError(f"failed to sign URL: {e}") from e


@dataclass(frozen=True)
class URLSigner:
    """Signing key bound to its CloudFront key id.

    Built once at startup and shared read-only by all request handlers.
    """

    key_id: str
    key: PrivateKeyMaterial = field(repr=False)

    def __post_init__(self):
        if isinstance(self.key, Ed25519KeyMaterial):
            raise SignError(ED25519_UNSUPPORTED)
        if not isinstance(self.key, RSAKeyMaterial):
            logger.warning(
                "CloudFront canned policies are verified with RSA-SHA1; "
                "%s signatures may be rejected by the CDN", self.key.algorithm,
            )

    def sign(self, target_url: str, expires: datetime, now: Optional[datetime] = None) -> str:
        return sign_url(target_url, self.key_id, self.key, expires, now=now)


def package_url(base_url: str, request_path: str) -> str:
    """Join a package request path onto the CDN base URL.

    "/repo/pkgs/apps/Firefox.pkg" with base "https://cdn.example.com/munki"
    becomes "https://cdn.example.com/munki/apps/Firefox.pkg".

    Raises:
        InvalidPackagePathError: If the path is outside /repo/pkgs/, names
            no file or has a ".." segment
        SignError: If the base URL is not absolute
    """
    if not request_path.startswith(PKGS_PREFIX):
        raise InvalidPackagePathError(request_path)
    rel_path = unquote(request_path[len(PKGS_PREFIX):]).lstrip("/")
    if not rel_path:
        raise InvalidPackagePathError(request_path)
    if ".." in rel_path.split("/") or "\\" in rel_path or "\x00" in rel_path:
        raise InvalidPackagePathError(request_path)

    _check_absolute_url(base_url)
    base = urlsplit(base_url)
    path = posixpath.normpath(posixpath.join("/", base.path.lstrip("/"), rel_path))
    return urlunsplit((base.scheme, base.netloc, quote(path), "", ""))


@dataclass(frozen=True)
class PackageRedirector:
    """Turns package request paths into signed CDN URLs."""

    base_url: str
    signer: URLSigner
    ttl: timedelta = DEFAULT_URL_TTL
    clock: Callable[[], datetime] = field(default=_utcnow, repr=False, compare=False)

    def location(self, request_path: str) -> str:
        """Signed redirect target for a /repo/pkgs/ request path.

        A fresh expiry of now + ttl is used on every call.
        """
        target = package_url(self.base_url, request_path)
        now = self.clock()
        return self.signer.sign(target, now + self.ttl, now=now)
