from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

from noir_registry.domain.exceptions import MalformedRepositoryUrlError
from noir_registry.domain.models import CuratedEntry, PackageRecord, RepositoryMetadata


def parse_repository_url(url: str) -> Tuple[str, str, str]:
    """
    Splits a source repository URL into (host, owner, repository).

    `https://github.com/noir-lang/noir-bignum.git/` gives
    ("github.com", "noir-lang", "noir-bignum"). Anything after the repository
    segment (`/tree/main/lib`, query, fragment) is ignored.

    Raises:
        MalformedRepositoryUrlError: If the URL has no host, owner or repository.
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise MalformedRepositoryUrlError(url)

    segments = [s for s in parsed.path.split('/') if s]
    if len(segments) < 2:
        raise MalformedRepositoryUrlError(url)

    owner, repo = segments[0], segments[1]
    if repo.endswith('.git'):
        repo = repo[:-len('.git')]
    if not owner or not repo or {owner, repo} & {'.', '..'}:
        raise MalformedRepositoryUrlError(url)
    return parsed.hostname.lower(), owner, repo


class GitHubTranslator:
    """
    Anti-corruption layer that translates raw GitHub REST responses and
    curated entries into registry domain models.
    """

    @staticmethod
    def to_domain(raw_repo: Dict[str, Any]) -> RepositoryMetadata:
        """
        Transforms a raw `GET /repos/{owner}/{repo}` payload into RepositoryMetadata.

        Args:
            raw_repo (Dict[str, Any]): The JSON body returned by GitHub.

        Returns:
            RepositoryMetadata: The fields the registry stores.
        """
        if not isinstance(raw_repo, dict):
            raise ValueError(f"Expected a repository object, got {type(raw_repo).__name__}.")

        # Extract nested fields with safe defaults
        owner_data = raw_repo.get('owner') or {}
        license_data = raw_repo.get('license') or {}

        login = owner_data.get('login')
        if not login:
            raise ValueError("owner.login is required to build RepositoryMetadata.")

        # GitHub reports unrecognised licenses as "NOASSERTION"
        spdx_id = license_data.get('spdx_id')
        if spdx_id == 'NOASSERTION':
            spdx_id = None

        return RepositoryMetadata(
            owner_login=login,
            owner_avatar_url=owner_data.get('avatar_url'),
            stars=raw_repo.get('stargazers_count') or 0,
            license=spdx_id,
            homepage=raw_repo.get('homepage') or None,
            topics=raw_repo.get('topics') or [],
        )

    @staticmethod
    def to_record(
        entry: CuratedEntry,
        owner: str,
        metadata: Optional[RepositoryMetadata] = None,
    ) -> PackageRecord:
        """
        Builds the record to merge for a curated entry. Without metadata only
        what the curated list and the URL tell us is filled in.
        """
        if metadata is None:
            return PackageRecord(
                name=entry.name,
                github_repository_url=entry.github_url,
                owner_github_username=owner,
                description=entry.description,
            )

        return PackageRecord(
            name=entry.name,
            github_repository_url=entry.github_url,
            owner_github_username=metadata.owner_login,
            description=entry.description,
            homepage=metadata.homepage,
            license=metadata.license,
            owner_avatar_url=metadata.owner_avatar_url,
            github_stars=metadata.stars,
        )
