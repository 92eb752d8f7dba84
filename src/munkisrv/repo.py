"""Static Munki repo serving.

Serves catalogs, manifests, icons and client resources from the repo
directory on disk. Package payloads under pkgs/ are never served from here;
they are redirected to CloudFront (see signing.py).
"""

import html
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

REPO_PREFIX = "/repo/"
HEALTH_FILE = "catalogs/all"


@dataclass
class RepoResponse:
    """Response produced for a repo request."""

    status: int
    body: bytes = b""
    content_type: str = "text/plain; charset=utf-8"
    location: Optional[str] = None


class MunkiRepo:
    """Read-only view of a Munki repo directory."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def is_healthy(self) -> bool:
        """Check that the repo has its 'all' catalog."""
        healthy = (self.root / HEALTH_FILE).is_file()
        if not healthy:
            logger.error("healthcheck failed: %s not found in %s", HEALTH_FILE, self.root)
        return healthy

    def resolve(self, rel_path: str) -> Optional[Path]:
        """Resolve a repo-relative path, or None if it escapes the root."""
        if "\x00" in rel_path:
            return None
        candidate = (self.root / rel_path.lstrip("/")).resolve()
        if candidate != self.root and not candidate.is_relative_to(self.root):
            return None
        return candidate

    def list_directory(self, directory: Path) -> bytes:
        """Render a directory as a minimal HTML index."""
        lines = ['<!doctype html>', '<meta name="viewport" content="width=device-width">', '<pre>']
        for entry in sorted(directory.iterdir(), key=lambda p: p.name):
            name = entry.name + ("/" if entry.is_dir() else "")
            lines.append(f'<a href="{quote(name)}">{html.escape(name)}</a>')
        lines.append('</pre>')
        return ("\n".join(lines) + "\n").encode("utf-8")


def guess_content_type(path: Path) -> str:
    if path.suffix == ".plist":
        return "text/xml; charset=utf-8"
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or "application/octet-stream"


def handle_repo_request(path: str, repo: MunkiRepo) -> RepoResponse:
    """Handle a GET for a path under /repo/.

    Args:
        path: Request path without query string (e.g. "/repo/catalogs/all")
        repo: Repo to serve from

    Returns:
        RepoResponse
    """
    if not path.startswith(REPO_PREFIX):
        return RepoResponse(404, b"404 page not found\n")

    rel_path = unquote(path[len(REPO_PREFIX):])
    target = repo.resolve(rel_path)
    if target is None or not target.exists():
        return RepoResponse(404, b"404 page not found\n")

    if target.is_dir():
        if not path.endswith("/"):
            return RepoResponse(301, location=path.rsplit("/", 1)[-1] + "/")
        index = target / "index.html"
        if index.is_file():
            target = index
        else:
            try:
                listing = repo.list_directory(target)
            except OSError as e:
                logger.error("Failed to list %s: %s", target, e)
                return RepoResponse(500, b"500 Internal Server Error\n")
            return RepoResponse(200, listing, "text/html; charset=utf-8")

    try:
        content = target.read_bytes()
    except OSError as e:
        logger.error("Failed to read %s: %s", target, e)
        return RepoResponse(500, b"500 Internal Server Error\n")

    return RepoResponse(200, content, guess_content_type(target))
