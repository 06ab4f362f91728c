import aiohttp
import asyncio
import logging
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel

from noir_registry.domain.exceptions import (
    PackageNotFoundError,
    RegistryRequestError,
    RegistryUnavailableError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30, connect=10)
MAX_ATTEMPTS = 3
BASE_DELAY = 0.5  # Seconds; doubled after every failed attempt
TRANSIENT_STATUSES = {502, 503, 504}


class RegistryPackage(BaseModel):
    """The part of a registry package record the CLI needs."""
    name: str
    github_repository_url: str
    latest_version: Optional[str] = None


class RegistryClient:
    """
    Client for the registry's read API, used by the manifest commands.
    """

    def __init__(
        self,
        registry_url: str,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY,
        timeout: aiohttp.ClientTimeout = REQUEST_TIMEOUT,
    ):
        self.registry_url = registry_url.rstrip('/')
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self.headers = {"Accept": "application/json", "User-Agent": "nargo-registry"}

    def package_url(self, name: str) -> str:
        return f"{self.registry_url}/packages/{quote(name, safe='')}"

    async def fetch_package(
        self,
        name: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> RegistryPackage:
        """
        Looks `name` up in the registry, retrying network errors, timeouts
        and 502/503/504 with exponential backoff.

        Raises:
            PackageNotFoundError: The registry does not know `name` (not retried).
            RegistryRequestError: Any other error status, or an unreadable body.
            RegistryUnavailableError: Every attempt failed transiently.
        """
        if session is None:
            async with aiohttp.ClientSession(timeout=self.timeout) as own_session:
                return await self.fetch_package(name, own_session)

        url = self.package_url(name)
        last_error: Optional[BaseException] = None

        for attempt in range(self.max_attempts):
            try:
                async with session.get(url, headers=self.headers, timeout=self.timeout) as response:
                    if response.status == 404:
                        raise PackageNotFoundError(name, self.registry_url)

                    if response.status in TRANSIENT_STATUSES:
                        last_error = RegistryRequestError(f"Registry server error: {response.status}")
                    elif response.status >= 400:
                        body = await response.text()
                        raise RegistryRequestError(
                            f"Registry returned error {response.status}: {body}\nRegistry URL: {self.registry_url}"
                        )
                    else:
                        try:
                            return RegistryPackage.model_validate(await response.json(content_type=None))
                        except ValueError as e:
                            raise RegistryRequestError(
                                f"Failed to parse package response from registry: {e}. "
                                "The registry may be returning an unexpected format."
                            ) from e

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e

            if attempt < self.max_attempts - 1:
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    f"Registry request failed ({last_error}), retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_attempts})..."
                )
                await asyncio.sleep(delay)

        raise RegistryUnavailableError(url, self.max_attempts, last_error)
