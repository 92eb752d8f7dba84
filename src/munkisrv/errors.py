"""Error types shared across munkisrv.

Every error carries a short code, a human-readable message and the HTTP
status a request handler should answer with if the error surfaces while
serving a request. Startup errors (config, key decode, TLS) are fatal;
request errors (signing) are isolated to the one request.
"""


class MunkisrvError(Exception):
    """Base exception with error code and HTTP status."""

    def __init__(self, code: str, message: str, http_status: int = 500):
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(f"{code}: {message}")


class ConfigError(MunkisrvError):
    """Configuration file missing, unreadable or malformed."""

    def __init__(self, message: str):
        super().__init__("E100", message)


class ConfigValidationError(MunkisrvError):
    """TLS policy failed pre-flight validation."""

    def __init__(self, message: str):
        super().__init__("E101", message)


class ConfigBuildError(MunkisrvError):
    """TLS context could not be built from a policy."""

    def __init__(self, message: str):
        super().__init__("E102", message)


class KeyDecodeError(MunkisrvError):
    """Private key could not be decoded into a signing key."""

    def __init__(self, message: str):
        super().__init__("E110", message)


class PEMDecodeError(KeyDecodeError):
    """Input does not contain a PEM block."""


class UnsupportedKeyFormatError(KeyDecodeError):
    """PEM block decoded but no supported key format parsed."""


class DisallowedKeyAlgorithmError(KeyDecodeError):
    """PKCS#8 container parsed but holds a key of a disallowed algorithm."""


class SignError(MunkisrvError):
    """URL could not be signed."""

    def __init__(self, message: str, code: str = "E500", http_status: int = 500):
        super().__init__(code, message, http_status)


class InvalidPackagePathError(SignError):
    """Package request path would escape the CDN base path."""

    def __init__(self, path: str):
        super().__init__(f"Invalid package path: {path}", code="E400", http_status=400)
