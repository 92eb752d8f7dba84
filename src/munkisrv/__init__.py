"""munkisrv: Munki repo server with CloudFront signed package redirects.

Serves the static repo (catalogs, manifests, icons) over HTTP or HTTPS with
an optional mutual-TLS policy, and redirects package downloads to
CloudFront with short-lived signed URLs.
"""

from munkisrv.errors import (
    MunkisrvError,
    ConfigError,
    ConfigValidationError,
    ConfigBuildError,
    KeyDecodeError,
    SignError,
    InvalidPackagePathError,
)
from munkisrv.config import (
    Config,
    CloudfrontConfig,
    ServerConfig,
    TLSConfig,
    load_config,
)
from munkisrv.keys import decode_private_key
from munkisrv.signing import URLSigner, PackageRedirector, sign_url
from munkisrv.tls import (
    ClientAuth,
    TLSContext,
    build_tls_context,
    validate_tls_config,
    tls_info,
)
from munkisrv.httpd import Server, create_server

__version__ = "0.1.0"

__all__ = [
    # Errors
    "MunkisrvError",
    "ConfigError",
    "ConfigValidationError",
    "ConfigBuildError",
    "KeyDecodeError",
    "SignError",
    "InvalidPackagePathError",
    # Config
    "Config",
    "CloudfrontConfig",
    "ServerConfig",
    "TLSConfig",
    "load_config",
    # Signing
    "decode_private_key",
    "URLSigner",
    "PackageRedirector",
    "sign_url",
    # TLS
    "ClientAuth",
    "TLSContext",
    "build_tls_context",
    "validate_tls_config",
    "tls_info",
    # Server
    "Server",
    "create_server",
]
