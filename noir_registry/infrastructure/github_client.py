import aiohttp
import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from noir_registry.domain.exceptions import (
    RateLimitExceededException,
    RepositoryNotFoundError,
    TransientError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=10)
MAX_RETRIES = 3
# Upper bound for honouring a secondary rate limit Retry-After header
MAX_RETRY_AFTER = 60


def _reset_at_iso(reset_header: Optional[str]) -> str:
    if not reset_header:
        return "unknown"
    try:
        return datetime.fromtimestamp(int(reset_header), tz=timezone.utc).isoformat()
    except ValueError:
        return reset_header


class GitHubRestClient:
    """
    Client for the GitHub REST repository endpoint.
    Handles optional authentication, retries and rate limit bookkeeping.
    """

    def __init__(self, token: Optional[str] = None):
        self.headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "noir-registry-scraper",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self.api_url = "https://api.github.com"
        # Last value of X-RateLimit-Remaining seen, None until the first response
        self.rate_limit_remaining: Optional[int] = None

    @property
    def authenticated(self) -> bool:
        return "Authorization" in self.headers

    @property
    def exhausted(self) -> bool:
        return self.rate_limit_remaining == 0

    def _record_rate_limit(self, response: aiohttp.ClientResponse) -> None:
        remaining = response.headers.get('X-RateLimit-Remaining')
        if remaining is not None and remaining.isdigit():
            self.rate_limit_remaining = int(remaining)

    async def fetch_repository(
        self,
        session: aiohttp.ClientSession,
        owner: str,
        repo: str,
    ) -> Dict[str, Any]:
        """
        Fetches `GET /repos/{owner}/{repo}`.

        Returns:
            The decoded JSON body.

        Raises:
            RepositoryNotFoundError: GitHub answered 404.
            RateLimitExceededException: The primary rate limit budget is spent.
            TransientError: Network errors or 5xx persisted through every retry.
        """
        url = f"{self.api_url}/repos/{owner}/{repo}"
        last_error: Optional[BaseException] = None

        for attempt in range(MAX_RETRIES):
          try:
            async with session.get(url, headers=self.headers, timeout=REQUEST_TIMEOUT) as response:
                self._record_rate_limit(response)

                if response.status == 404:
                    raise RepositoryNotFoundError(owner, repo)

                if response.status in {403, 429}:
                    if response.headers.get('X-RateLimit-Remaining') == '0':
                        raise RateLimitExceededException(
                            reset_at=_reset_at_iso(response.headers.get('X-RateLimit-Reset'))
                        )
                    # Secondary rate limit (abuse detection)
                    retry_after = response.headers.get('Retry-After')
                    sleep_time = min(int(retry_after) if retry_after else MAX_RETRY_AFTER, MAX_RETRY_AFTER)
                    logger.warning(f"Secondary rate limit ({response.status}) for {owner}/{repo}. Sleeping {sleep_time}s...")
                    last_error = TransientError(f"GitHub answered {response.status}")
                    await asyncio.sleep(sleep_time)
                    continue

                if response.status in {500, 502, 503, 504}:
                    sleep_time = (2 ** attempt) + random.uniform(0, 1)
                    logger.warning(
                        f"Server error ({response.status}) for {owner}/{repo}, "
                        f"retrying in {sleep_time:.1f}s (attempt {attempt + 1}/{MAX_RETRIES})..."
                    )
                    last_error = TransientError(f"GitHub answered {response.status}")
                    await asyncio.sleep(sleep_time)
                    continue

                response.raise_for_status()
                return await response.json()

          except (aiohttp.ClientError, asyncio.TimeoutError) as e:
              sleep_time = (2 ** attempt) + random.uniform(0, 1)
              logger.warning(
                  f"Request for {owner}/{repo} failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}. "
                  f"Retrying in {sleep_time:.1f}s..."
              )
              last_error = e
              await asyncio.sleep(sleep_time)

        raise TransientError(
            f"Failed to fetch {owner}/{repo} after {MAX_RETRIES} attempts: {last_error}"
        )
