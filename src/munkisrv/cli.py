"""CLI for munkisrv.

Provides:
- serve: run the server in the foreground
- check: validate a config file without binding a socket
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from munkisrv.config import load_config
from munkisrv.errors import MunkisrvError
from munkisrv.httpd import create_server
from munkisrv.tls import tls_info

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path("config/config.yaml")


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _add_common_args(parser: argparse.ArgumentParser):
    """Add arguments shared between subcommands."""
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config.yaml",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )


def _handle_serve(argv):
    """Handle 'serve': load config, start, and serve until signalled."""
    parser = argparse.ArgumentParser(
        prog="munkisrv serve",
        description="Serve the munki repo (foreground)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_args(parser)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(args.config)
        server = create_server(config)
        server.start()
    except MunkisrvError as e:
        logger.error("Failed to start server: %s", e.message)
        return 1
    except OSError as e:
        logger.error("Failed to start server: %s", e)
        return 1

    server.install_signal_handlers()
    server.serve_forever()
    return 0


def _handle_check(argv):
    """Handle 'check': run every startup step except binding."""
    parser = argparse.ArgumentParser(
        prog="munkisrv check",
        description="Validate configuration, signing key and TLS settings",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    _add_common_args(parser)
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = load_config(args.config)
        server = create_server(config)
    except MunkisrvError as e:
        if args.json:
            print(json.dumps({"ok": False, "error": {"code": e.code, "message": e.message}}, indent=2))
        else:
            print(f"Error: {e.message}", file=sys.stderr)
        return 1

    bind, port = config.server.listen_address()
    info = {
        "ok": True,
        "listen": f"{server.scheme}://{bind or '0.0.0.0'}:{port}",
        "repo_dir": str(server.repo.root),
        "repo_healthy": server.repo.is_healthy(),
        "cloudfront_url": server.redirector.base_url,
        "key_id": server.redirector.signer.key_id,
        "key_algorithm": server.redirector.signer.key.algorithm,
        "tls": tls_info(config.tls),
    }
    if args.json:
        print(json.dumps(info, indent=2))
    else:
        print(f"Config OK: {config.path}")
        print(f"Listen: {info['listen']}")
        print(f"Repo: {info['repo_dir']}{'' if info['repo_healthy'] else ' (missing catalogs/all)'}")
        print(f"CloudFront: {info['cloudfront_url']} (key {info['key_id']}, {info['key_algorithm']})")
        print(f"TLS: {'enabled' if config.tls.enabled else 'disabled'}")
    return 0


def main(argv=None):
    """CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "serve": _handle_serve,
        "check": _handle_check,
    }

    if not argv or argv[0] in ("-h", "--help"):
        print("Usage: munkisrv <command> [options]")
        print()
        print("Commands:")
        print("  serve    Serve the munki repo")
        print("  check    Validate configuration without serving")
        print()
        print("Run 'munkisrv <command> --help' for command-specific options.")
        return 0

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: Unknown command '{subcmd}'")
        print(f"Available commands: {', '.join(subcommands)}")
        return 1

    return subcommands[subcmd](argv[1:])


if __name__ == "__main__":
    sys.exit(main())
