import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from noir_registry.domain.exceptions import (
    RateLimitExceededException,
    RepositoryNotFoundError,
    TransientError,
)
from noir_registry.infrastructure.github_client import GitHubRestClient, MAX_RETRIES


def _response(status, body=None, headers=None):
    resp = AsyncMock()
    resp.status = status
    resp.headers = headers or {}
    resp.raise_for_status = MagicMock()
    resp.json = AsyncMock(return_value=body)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


REPO_BODY = {
    "owner": {"login": "noir-lang", "avatar_url": "https://avatars.example/1"},
    "stargazers_count": 42,
}


class TestGitHubRestClient(unittest.TestCase):
    def test_headers_include_token_when_given(self) -> None:
        token = "test-token"
        client = GitHubRestClient(token=token)

        self.assertIsInstance(client.headers, dict)
        self.assertEqual(client.headers["Authorization"], f"Bearer {token}")
        self.assertTrue(client.authenticated)

    def test_headers_without_token_are_anonymous(self) -> None:
        client = GitHubRestClient()
        self.assertNotIn("Authorization", client.headers)
        self.assertIn("User-Agent", client.headers)
        self.assertIn("Accept", client.headers)
        self.assertFalse(client.authenticated)


class TestFetchRepository(unittest.IsolatedAsyncioTestCase):
    async def test_success_records_remaining_budget(self) -> None:
        client = GitHubRestClient()
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(200, REPO_BODY, {"X-RateLimit-Remaining": "59"}))

        body = await client.fetch_repository(session, "noir-lang", "noir-bignum")

        self.assertEqual(body, REPO_BODY)
        self.assertEqual(client.rate_limit_remaining, 59)
        self.assertFalse(client.exhausted)
        self.assertEqual(session.get.call_args.args[0], "https://api.github.com/repos/noir-lang/noir-bignum")

    async def test_404_raises_not_found_without_retry(self) -> None:
        client = GitHubRestClient()
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(404))

        with self.assertRaises(RepositoryNotFoundError):
            await client.fetch_repository(session, "ghost", "missing")
        self.assertEqual(session.get.call_count, 1)

    async def test_exhausted_primary_rate_limit_raises(self) -> None:
        client = GitHubRestClient()
        session = AsyncMock()
        session.get = MagicMock(return_value=_response(
            403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1767225600"}
        ))

        with self.assertRaises(RateLimitExceededException) as ctx:
            await client.fetch_repository(session, "noir-lang", "noir-bignum")

        self.assertTrue(client.exhausted)
        self.assertIn("2026-01-01", ctx.exception.reset_at)

    async def test_403_retry_after_is_respected(self) -> None:
        """A secondary rate limit sleeps for Retry-After, then retries."""
        client = GitHubRestClient(token="test-token")
        session = AsyncMock()
        session.get = MagicMock(side_effect=[
            _response(403, headers={"Retry-After": "1"}),
            _response(200, REPO_BODY),
        ])

        with patch("noir_registry.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            body = await client.fetch_repository(session, "noir-lang", "noir-bignum")

        mock_sleep.assert_any_call(1)
        self.assertEqual(body["stargazers_count"], 42)

    async def test_server_errors_and_network_errors_exhaust_into_transient_error(self) -> None:
        client = GitHubRestClient()
        session = AsyncMock()
        session.get = MagicMock(side_effect=[
            _response(502),
            aiohttp.ClientConnectionError("connection reset"),
            _response(503),
        ])

        with patch("noir_registry.infrastructure.github_client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with self.assertRaises(TransientError):
                await client.fetch_repository(session, "noir-lang", "noir-bignum")

        self.assertEqual(session.get.call_count, MAX_RETRIES)
        self.assertEqual(mock_sleep.await_count, MAX_RETRIES)
