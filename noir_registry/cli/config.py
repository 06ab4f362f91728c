import logging
import os
import tomllib
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

REGISTRY_URL_ENV_VAR = "NOIR_REGISTRY_URL"
DEFAULT_REGISTRY_URL = "http://localhost:8080/api"


def config_path() -> Path:
    """
    `$XDG_CONFIG_HOME/noir-registry/config.toml`, falling back to `~/.config`.
    """
    base = os.environ.get("XDG_CONFIG_HOME")
    config_dir = Path(base).expanduser() if base else Path.home() / ".config"
    return config_dir / "noir-registry" / "config.toml"


def load_config(path: Optional[Path] = None) -> dict:
    path = path or config_path()
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}


def resolve_registry_url(flag: Optional[str] = None, path: Optional[Path] = None) -> str:
    """
    Registry URL from the --registry flag, then NOIR_REGISTRY_URL, then the
    config file, then the local default.
    """
    if flag:
        return flag
    env_url = os.environ.get(REGISTRY_URL_ENV_VAR)
    if env_url:
        return env_url
    configured = load_config(path).get("registry_url")
    if isinstance(configured, str) and configured:
        return configured
    return DEFAULT_REGISTRY_URL
