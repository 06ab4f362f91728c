import unittest
from datetime import datetime, timezone

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from noir_registry.api.app import create_app
from noir_registry.api.dependencies import get_queries
from noir_registry.domain.models import (
    Category,
    PackageDetail,
    PackageSummary,
    PackageVersion,
    SortOrder,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)

EC = PackageSummary(
    id=1,
    name="ec-crypto",
    description="elliptic curve crypto",
    github_repository_url="https://github.com/alice/ec-crypto",
    owner_github_username="alice",
    github_stars=10,
    latest_version="v0.2.0",
    latest_version_id=7,
    source="awesome-noir",
    created_at=NOW,
    updated_at=NOW,
    keywords=["ecc"],
    category="cryptography",
)


class _FakeQueries:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def _maybe_fail(self):
        if self.fail:
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def ping(self):
        self._maybe_fail()

    async def list(self, sort=SortOrder.STARS, keyword=None, category=None, limit=None):
        self._maybe_fail()
        self.calls.append(("list", sort, keyword, category, limit))
        return [EC]

    async def search(self, term, keyword=None, category=None, sort=SortOrder.STARS, limit=None):
        self._maybe_fail()
        self.calls.append(("search", term, keyword, category, sort, limit))
        return [EC] if "crypto" in term else []

    async def get_by_name(self, name):
        self._maybe_fail()
        if name != "ec-crypto":
            return None
        version = PackageVersion(id=7, package_id=1, version="v0.2.0", published_at=NOW)
        return PackageDetail(**EC.model_dump(), versions=[version])

    async def list_categories(self):
        self._maybe_fail()
        return [Category(id=1, name="Cryptography", slug="cryptography", description="Crypto")]


class TestRegistryApi(unittest.TestCase):
    def setUp(self) -> None:
        self.queries = _FakeQueries()
        self.app = create_app(["http://localhost:3000"])
        self.app.dependency_overrides[get_queries] = lambda: self.queries
        self.client = TestClient(self.app)

    def test_list_packages_passes_filters(self) -> None:
        response = self.client.get("/api/packages", params={"sort": "name", "keyword": "ecc", "limit": 5})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()[0]["name"], "ec-crypto")
        self.assertEqual(self.queries.calls, [("list", SortOrder.NAME, "ecc", None, 5)])

    def test_invalid_sort_and_limit_are_rejected(self) -> None:
        self.assertEqual(self.client.get("/api/packages", params={"sort": "downloads"}).status_code, 422)
        self.assertEqual(self.client.get("/api/packages", params={"limit": 0}).status_code, 422)

    def test_get_package_detail(self) -> None:
        response = self.client.get("/api/packages/ec-crypto")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["latest_version"], "v0.2.0")
        self.assertEqual(body["versions"][0]["version"], "v0.2.0")
        self.assertEqual(body["keywords"], ["ecc"])

    def test_unknown_package_is_404(self) -> None:
        response = self.client.get("/api/packages/ghost")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "Package 'ghost' not found")

    def test_search_requires_query(self) -> None:
        self.assertEqual(self.client.get("/api/search").status_code, 422)

        response = self.client.get("/api/search", params={"q": "crypto", "category": "cryptography"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([p["name"] for p in response.json()], ["ec-crypto"])
        self.assertEqual(self.client.get("/api/search", params={"q": "zzz"}).json(), [])

    def test_categories(self) -> None:
        response = self.client.get("/api/categories")
        self.assertEqual(response.json()[0]["slug"], "cryptography")

    def test_health_reports_database(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["database"], "connected")

    def test_database_outage(self) -> None:
        self.queries.fail = True

        self.assertEqual(self.client.get("/health").status_code, 503)
        response = self.client.get("/api/packages")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Database error while fetching packages")
