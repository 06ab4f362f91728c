import logging
import os
import re
import stat
import tempfile
import tomllib
from pathlib import Path
from typing import Iterable, Optional

import tomlkit
from tomlkit.exceptions import TOMLKitError

from noir_registry.domain.exceptions import (
    DependencyExistsError,
    ManifestNotFoundError,
    ManifestValidationError,
)

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Nargo.toml"
DEPENDENCIES = "dependencies"
LONE_LF = re.compile(r"(?<!\r)\n")


def find_manifest(hint: Optional[Path] = None, start_dir: Optional[Path] = None) -> Path:
    """
    Returns the manifest to edit: the hint when given, otherwise the first
    Nargo.toml found walking up from `start_dir` (default: cwd).

    Raises:
        ManifestNotFoundError: If the hint does not exist or no ancestor has one.
    """
    if hint is not None:
        hint = Path(hint)
        if hint.is_dir():
            hint = hint / MANIFEST_NAME
        if not hint.is_file():
            raise ManifestNotFoundError(f"{MANIFEST_NAME} not found at: {hint}")
        return hint

    current = Path(start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / MANIFEST_NAME
        if candidate.is_file():
            return candidate

    raise ManifestNotFoundError(
        f"Could not find {MANIFEST_NAME} in {current} or any parent directory"
    )


def dependency_key(name: str) -> str:
    """Nargo rejects hyphens in dependency keys."""
    return name.replace('-', '_')


def validate_manifest_text(
    text: str,
    present: Iterable[str] = (),
    absent: Iterable[str] = (),
) -> dict:
    """
    Parses `text` with an independent TOML reader and checks the shape we rely
    on: a root table whose `dependencies`, if any, is a table, holding every key
    in `present` and none in `absent`.

    Raises:
        ManifestValidationError: If any check fails.
    """
    try:
        parsed = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ManifestValidationError(f"{MANIFEST_NAME} is not valid TOML: {e}") from e

    deps = parsed.get(DEPENDENCIES, {})
    if not isinstance(deps, dict):
        raise ManifestValidationError(f"[{DEPENDENCIES}] in {MANIFEST_NAME} is not a table")
    for key in present:
        if key not in deps:
            raise ManifestValidationError(f"Dependency '{key}' missing after edit")
    for key in absent:
        if key in deps:
            raise ManifestValidationError(f"Dependency '{key}' still present after edit")
    return parsed


class ManifestFile:
    """
    In-memory, format-preserving copy of a Nargo.toml. Nothing reaches disk
    until `commit`, which validates the serialized text and atomically
    replaces the original.
    """

    def __init__(self, path: Path, document: tomlkit.TOMLDocument, original_text: str):
        self.path = path
        self.document = document
        self.original_text = original_text
        self._added = set()
        self._removed = set()

    @classmethod
    def load(cls, path: Path) -> "ManifestFile":
        # Bytes in, bytes out: keeps CRLF line endings untouched
        try:
            text = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise ManifestValidationError(f"{path} is not valid UTF-8: {e}") from e
        try:
            document = tomlkit.parse(text)
        except TOMLKitError as e:
            raise ManifestValidationError(f"Failed to parse {path}: {e}") from e

        deps = document.get(DEPENDENCIES)
        if deps is not None and not isinstance(deps, dict):
            raise ManifestValidationError(f"[{DEPENDENCIES}] in {path} is not a table")
        return cls(path, document, text)

    def _dependencies(self, create: bool = False):
        deps = self.document.get(DEPENDENCIES)
        if deps is None and create:
            deps = tomlkit.table()
            self.document[DEPENDENCIES] = deps
            deps = self.document[DEPENDENCIES]
        return deps

    def find(self, name: str) -> Optional[str]:
        """Key under which `name` is declared (as written or sanitized), if any."""
        deps = self._dependencies()
        if not deps:
            return None
        for key in (name, dependency_key(name)):
            if key in deps:
                return key
        return None

    def has_dependency(self, name: str) -> bool:
        return self.find(name) is not None

    def git_url(self, name: str) -> Optional[str]:
        key = self.find(name)
        if key is None:
            return None
        entry = self._dependencies()[key]
        if isinstance(entry, dict) and entry.get("git"):
            return str(entry["git"])
        return None

    def add_dependency(self, name: str, git_url: str, tag: Optional[str] = None) -> str:
        """
        Declares `name = { git = ..., tag = ... }`.

        Raises:
            DependencyExistsError: If the manifest already declares `name`.
        """
        if self.has_dependency(name):
            raise DependencyExistsError(name, self.path)

        entry = tomlkit.inline_table()
        entry["git"] = git_url
        if tag:
            entry["tag"] = tag

        key = dependency_key(name)
        self._dependencies(create=True)[key] = entry
        self._added.add(key)
        return key

    def remove_dependency(self, name: str) -> Optional[str]:
        """Removes `name` and returns the key it was stored under, or None if absent."""
        key = self.find(name)
        if key is None:
            return None
        del self._dependencies()[key]
        self._removed.add(key)
        self._added.discard(key)
        return key

    def render(self) -> str:
        text = tomlkit.dumps(self.document)
        # tomlkit writes new lines with LF; keep a CRLF file consistently CRLF
        if "\r\n" in self.original_text:
            text = LONE_LF.sub("\r\n", text)
        return text

    def commit(self) -> None:
        """
        Serializes, re-parses and atomically replaces the manifest. On any
        failure the original file is left exactly as it was.

        Raises:
            ManifestValidationError: If the serialized document does not
                validate; nothing is written.
        """
        text = self.render()
        validate_manifest_text(text, present=self._added, absent=self._removed)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(text.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, stat.S_IMODE(self.path.stat().st_mode))
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote {self.path}")
        self.original_text = text
        self._added.clear()
        self._removed.clear()
