import logging
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from noir_registry.cli import cache
from noir_registry.cli.manifest import ManifestFile, find_manifest
from noir_registry.cli.registry_client import RegistryClient
from noir_registry.domain.exceptions import MalformedRepositoryUrlError

logger = logging.getLogger(__name__)


class AddResult(BaseModel):
    name: str
    key: str
    manifest_path: Path
    git_url: str
    tag: Optional[str] = None


class RemoveReport(BaseModel):
    manifest_path: Path
    removed: List[str] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    cache_removed: List[Path] = Field(default_factory=list)
    cache_warnings: List[str] = Field(default_factory=list)


class ManifestSynchronizer:
    """
    Adds registry packages to, and removes them from, a Nargo.toml.

    Each call performs one read-modify-write of the manifest; the file on
    disk is either the original or the fully edited, validated document.
    """

    def __init__(self, registry_client: RegistryClient, cache_root: Optional[Path] = None):
        self.registry_client = registry_client
        self.cache_root = cache_root

    async def add(self, name: str, manifest_hint: Optional[Path] = None) -> AddResult:
        """
        Raises:
            ManifestNotFoundError, PackageNotFoundError, RegistryUnavailableError,
            RegistryRequestError, DependencyExistsError, ManifestValidationError
        """
        manifest_path = find_manifest(manifest_hint)
        package = await self.registry_client.fetch_package(name)

        manifest = ManifestFile.load(manifest_path)
        key = manifest.add_dependency(name, package.github_repository_url, package.latest_version)
        manifest.commit()
        logger.info(f"Added '{name}' to {manifest_path}")

        return AddResult(
            name=name,
            key=key,
            manifest_path=manifest_path,
            git_url=package.github_repository_url,
            tag=package.latest_version,
        )

    def remove(
        self,
        names: Iterable[str],
        manifest_hint: Optional[Path] = None,
        purge_cache: bool = False,
    ) -> RemoveReport:
        """
        Removes every named dependency that is present; absent names are
        reported in `missing` and do not stop the others. The manifest is
        written once, after all removals, and only if something changed.

        Cache cleanup happens after the manifest is committed and only ever
        produces warnings.
        """
        manifest_path = find_manifest(manifest_hint)
        manifest = ManifestFile.load(manifest_path)
        report = RemoveReport(manifest_path=manifest_path)
        git_urls = []

        for name in names:
            git_url = manifest.git_url(name)
            if manifest.remove_dependency(name) is None:
                logger.warning(f"Dependency '{name}' not found in {manifest_path}")
                report.missing.append(name)
                continue
            report.removed.append(name)
            git_urls.append((name, git_url))

        if report.removed:
            manifest.commit()

        if purge_cache:
            for name, git_url in git_urls:
                self._purge(name, git_url, report)

        return report

    def _purge(self, name: str, git_url: Optional[str], report: RemoveReport) -> None:
        if git_url is None:
            report.cache_warnings.append(f"'{name}' is not a git dependency; no cache to clean")
            return
        try:
            removed = cache.purge(git_url, self.cache_root)
        except (MalformedRepositoryUrlError, OSError) as e:
            report.cache_warnings.append(f"Could not clean cache for '{name}': {e}")
            return
        if removed is not None:
            report.cache_removed.append(removed)
