import aiohttp
import asyncio
import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

from noir_registry.domain.exceptions import TransientError
from noir_registry.domain.models import CuratedEntry

logger = logging.getLogger(__name__)

AWESOME_NOIR_URL = "https://raw.githubusercontent.com/noir-lang/awesome-noir/main/README.md"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)
MAX_RETRIES = 3

# - [Name](url) - description   (separator may also be an en/em dash or a colon)
ENTRY_PATTERN = re.compile(
    r"^\s*[-*+]\s*\[(?P<name>[^\]]+)\]\((?P<url>[^)\s]+)\)\s*(?:[-–—:]\s*(?P<description>.*))?$"
)
HEADING_PATTERN = re.compile(r"^\s*#{1,6}\s+(?P<title>.+?)\s*#*\s*$")

SOURCE_HOSTS = {"github.com", "www.github.com"}


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = text.strip().strip('*_`').strip()
    return text or None


def parse_curated_index(markdown: str) -> List[CuratedEntry]:
    """
    Extracts package entries from the curated README.

    Lines that are not `[name](url)` list items, and links that do not point
    at a GitHub repository host, are dropped. The first occurrence of a name
    wins. Each entry remembers the closest heading above it.
    """
    entries: List[CuratedEntry] = []
    seen = set()
    section = None

    for line in markdown.splitlines():
        heading = HEADING_PATTERN.match(line)
        if heading:
            section = _clean(heading.group('title'))
            continue

        match = ENTRY_PATTERN.match(line)
        if not match:
            continue

        name = _clean(match.group('name'))
        url = match.group('url').strip()
        if not name or not url:
            continue
        if (urlparse(url).hostname or '').lower() not in SOURCE_HOSTS:
            continue
        if name in seen:
            logger.debug(f"Duplicate curated entry '{name}' ignored.")
            continue
        seen.add(name)

        entries.append(CuratedEntry(
            name=name,
            github_url=url,
            description=_clean(match.group('description')),
            section=section,
        ))

    return entries


class CuratedIndexSource:
    """
    Downloads the curated package list.
    """

    def __init__(self, url: str = AWESOME_NOIR_URL):
        self.url = url
        self.headers = {"User-Agent": "noir-registry-scraper"}

    async def fetch(self, session: aiohttp.ClientSession) -> str:
        last_error: Optional[BaseException] = None
        for attempt in range(MAX_RETRIES):
            try:
                async with session.get(self.url, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
                    response.raise_for_status()
                    return await response.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                sleep_time = 2 ** attempt
                logger.warning(
                    f"Fetching curated index failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                    f"Retrying in {sleep_time}s..."
                )
                await asyncio.sleep(sleep_time)

        raise TransientError(f"Failed to fetch curated index from {self.url}: {last_error}")

    async def entries(self, session: aiohttp.ClientSession) -> List[CuratedEntry]:
        return parse_curated_index(await self.fetch(session))
