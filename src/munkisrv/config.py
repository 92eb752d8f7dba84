"""Server configuration management.

Configuration is loaded from a single YAML file with three sections:
- server: listen address and location of the static Munki repo
- cloudfront: CDN base URL, key pair id and signing private key (PEM)
- tls: listener TLS policy

Every leaf can be overridden from the environment as ENV_<SECTION>_<KEY>,
e.g. ENV_SERVER_PORT=":9090" or ENV_TLS_ENABLED=true.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional, Tuple

import yaml

from munkisrv.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "ENV"
DEFAULT_PORT = ":8080"
DEFAULT_REPO_DIR = "repo"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class ServerConfig:
    """Listener and repo settings."""

    port: str = DEFAULT_PORT
    host: str = ""
    repo_dir: str = DEFAULT_REPO_DIR

    def listen_address(self) -> Tuple[str, int]:
        """Resolve the (host, port) pair to bind.

        Accepts Go-style addresses (":8080", "127.0.0.1:8080") as well as a
        bare port ("8080"). A host embedded in `port` wins over `host`.

        Raises:
            ConfigError: If the port is not a number in 0-65535
        """
        host, sep, port = self.port.rpartition(":")
        if not sep:
            host = ""
        host = host.strip("[]") or self.host
        try:
            port_num = int(port)
        except ValueError:
            raise ConfigError(f"invalid server.port: {self.port!r}")
        if not 0 <= port_num <= 65535:
            raise ConfigError(f"invalid server.port: {self.port!r}")
        return host, port_num


@dataclass(frozen=True)
class CloudfrontConfig:
    """CloudFront signed URL settings."""

    url: str = ""
    key_id: str = ""
    private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class TLSConfig:
    """Declarative TLS policy for the listener.

    client_auth: "none", "request", "require", "verify-if-given",
                 "require-and-verify"
    min_version / max_version: "1.0", "1.1", "1.2", "1.3"
    """

    enabled: bool = False
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    client_auth: str = ""
    min_version: str = ""
    max_version: str = ""


@dataclass(frozen=True)
class Config:
    """Top-level munkisrv configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    cloudfront: CloudfrontConfig = field(default_factory=CloudfrontConfig)
    tls: TLSConfig = field(default_factory=TLSConfig)
    path: Optional[Path] = None

    def repo_path(self) -> Path:
        """Repo directory, resolved relative to the config file."""
        repo_dir = Path(self.server.repo_dir)
        if not repo_dir.is_absolute() and self.path is not None:
            repo_dir = self.path.parent / repo_dir
        return repo_dir


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _parse_bool(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"invalid boolean for {name}: {value!r}")


def _build_section(cls, section: str, raw: dict, environ):
    """Build a section dataclass from YAML values plus env overrides."""
    if not isinstance(raw, dict):
        raise ConfigError(f"section '{section}' must be a mapping")

    values = {}
    for f in fields(cls):
        name = f"{section}.{f.name}"
        env_key = f"{ENV_PREFIX}_{section}_{f.name}".upper()
        value = raw.get(f.name)
        if env_key in environ:
            logger.debug("Overriding %s from %s", name, env_key)
            value = environ[env_key]
        if value is None:
            continue
        if f.type is bool:
            values[f.name] = _parse_bool(value, name)
        else:
            values[f.name] = str(value)

    unknown = set(raw) - {f.name for f in fields(cls)}
    if unknown:
        logger.warning("Ignoring unknown keys in '%s': %s", section, ", ".join(sorted(unknown)))

    return cls(**values)


def load_config(path: Path, environ=None) -> Config:
    """Load configuration from a YAML file with environment overrides.

    Args:
        path: Path to config YAML
        environ: Environment mapping (default: os.environ)

    Returns:
        Config instance

    Raises:
        ConfigError: If the file is missing, unreadable or malformed
    """
    if environ is None:
        environ = os.environ
    path = Path(path).resolve()

    try:
        data = _parse_yaml(path)
    except FileNotFoundError:
        raise ConfigError(f"config file not found: {path}")
    except OSError as e:
        raise ConfigError(f"failed to read {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    config = Config(
        server=_build_section(ServerConfig, "server", data.get("server") or {}, environ),
        cloudfront=_build_section(CloudfrontConfig, "cloudfront", data.get("cloudfront") or {}, environ),
        tls=_build_section(TLSConfig, "tls", data.get("tls") or {}, environ),
    )
    logger.debug("Loaded config from %s", path)
    return replace(config, path=path)
