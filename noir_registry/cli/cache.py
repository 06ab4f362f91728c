import logging
import shutil
from pathlib import Path
from typing import Optional

from noir_registry.infrastructure.acl import parse_repository_url

logger = logging.getLogger(__name__)


def default_cache_root() -> Path:
    """Where nargo checks out git dependencies: ~/nargo/<host>/<owner>/<repo>/<tag>."""
    return Path.home() / "nargo"


def cache_path_for(git_url: str, cache_root: Optional[Path] = None) -> Path:
    """
    Raises:
        MalformedRepositoryUrlError: If the URL has no host/owner/repository.
    """
    host, owner, repo = parse_repository_url(git_url)
    return (cache_root or default_cache_root()) / host / owner / repo


def purge(git_url: str, cache_root: Optional[Path] = None) -> Optional[Path]:
    """
    Deletes the cached checkout for `git_url`.

    Returns:
        The deleted directory, or None when nothing was cached.

    Raises:
        MalformedRepositoryUrlError, OSError
    """
    path = cache_path_for(git_url, cache_root)
    if not path.exists():
        logger.debug(f"No cached checkout at {path}")
        return None
    shutil.rmtree(path)
    return path
