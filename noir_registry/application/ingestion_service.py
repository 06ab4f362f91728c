import asyncio
import logging
import re
from typing import Optional

import aiohttp

from noir_registry.domain.exceptions import (
    DatabaseException,
    MalformedRepositoryUrlError,
    RateLimitExceededException,
    RepositoryNotFoundError,
    TransientError,
)
from noir_registry.domain.models import CuratedEntry, IngestionReport, RepositoryMetadata
from noir_registry.infrastructure.acl import GitHubTranslator, parse_repository_url
from noir_registry.infrastructure.database import PackageStore
from noir_registry.infrastructure.github_client import GitHubRestClient
from noir_registry.infrastructure.index_source import CuratedIndexSource

logger = logging.getLogger(__name__)

INTER_REQUEST_DELAY = 0.5  # Seconds between GitHub calls to stay clear of secondary rate limits
CONNECTOR_LIMIT = 10


def slugify(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    return re.sub(r'[^a-z0-9]+', '-', text.lower()).strip('-') or None


class IngestionService:
    """
    Service responsible for importing the curated package list into the
    store: parse, enrich each entry from GitHub, then merge by name.

    Running it again over the same list converges on the same rows; only the
    star counters move.
    """

    def __init__(
            self,
            index_source: CuratedIndexSource,
            github_client: GitHubRestClient,
            package_store: PackageStore,
            inter_request_delay: float = INTER_REQUEST_DELAY,
    ):
        self.index_source = index_source
        self.github_client = github_client
        self.package_store = package_store
        self.inter_request_delay = inter_request_delay

    async def ingest(self) -> IngestionReport:
        """
        Runs one full ingestion pass. Per-entry failures are counted in the
        report and never abort the batch.
        """
        report = IngestionReport()

        async with aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=CONNECTOR_LIMIT),
        ) as session:
            entries = await self.index_source.entries(session)
            report.found = len(entries)
            logger.info(f"Found {report.found} packages in the curated index.")

            if not self.github_client.authenticated:
                logger.warning("No GITHUB_TOKEN configured - rate limited to 60 requests/hour.")

            for position, entry in enumerate(entries, start=1):
                await self._ingest_entry(session, entry, report, position)

        logger.info(
            f"Ingestion completed. Found {report.found}, enriched {report.enriched}, "
            f"partial {report.partial}, inserted {report.inserted}, "
            f"updated {report.updated}, failed {report.failed}."
        )
        return report

    async def _ingest_entry(self, session, entry: CuratedEntry, report: IngestionReport, position: int) -> None:
        prefix = f"[{position}/{report.found}] {entry.name}"

        try:
            _, owner, repo = parse_repository_url(entry.github_url)
        except MalformedRepositoryUrlError as e:
            self._fail(report, entry, str(e))
            return

        metadata = None
        try:
            metadata = await self._enrich(session, owner, repo)
        except RepositoryNotFoundError as e:
            self._fail(report, entry, str(e))
            return
        except (TransientError, ValueError) as e:
            # Covers RateLimitExceededException; keep what the curated list gave us.
            logger.warning(f"{prefix}: enrichment failed ({e}). Storing partial metadata.")

        record = GitHubTranslator.to_record(entry, owner, metadata)
        keywords = metadata.topics if metadata is not None else None

        try:
            _, inserted = await self.package_store.save_entry(
                record, keywords=keywords, category_slug=slugify(entry.section)
            )
        except DatabaseException as e:
            self._fail(report, entry, str(e))
            return

        if metadata is None:
            report.partial += 1
        else:
            report.enriched += 1
        if inserted:
            report.inserted += 1
        else:
            report.updated += 1

        stars = f"{metadata.stars} stars" if metadata is not None else "no GitHub metadata"
        logger.info(f"{prefix}: {'inserted' if inserted else 'updated'} ({stars}).")

    async def _enrich(self, session, owner: str, repo: str) -> Optional[RepositoryMetadata]:
        if self.github_client.exhausted:
            raise RateLimitExceededException(reset_at="unknown", message="GitHub rate limit budget spent.")

        raw = await self.github_client.fetch_repository(session, owner, repo)
        if self.inter_request_delay:
            await asyncio.sleep(self.inter_request_delay)
        return GitHubTranslator.to_domain(raw)

    @staticmethod
    def _fail(report: IngestionReport, entry: CuratedEntry, reason: str) -> None:
        report.failed += 1
        report.failures.append(f"{entry.name}: {reason}")
        logger.error(f"Skipping {entry.name}: {reason}")
