import unittest
from datetime import datetime, timezone

from noir_registry.domain.merge import merge_package
from noir_registry.domain.models import PackageRecord

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _record(**overrides) -> PackageRecord:
    fields = {
        "name": "ec-crypto",
        "github_repository_url": "https://github.com/alice/ec-crypto",
        "owner_github_username": "alice",
        "description": "elliptic curve crypto",
        "license": "MIT",
        "owner_avatar_url": "https://avatars.example/alice",
        "github_stars": 10,
    }
    fields.update(overrides)
    return PackageRecord(**fields)


class TestMergePackage(unittest.TestCase):
    def test_new_package_gets_full_insert_row(self) -> None:
        row = merge_package(None, _record(), T0)

        self.assertEqual(row["name"], "ec-crypto")
        self.assertEqual(row["github_stars"], 10)
        self.assertEqual(row["total_downloads"], 0)
        self.assertEqual(row["source"], "awesome-noir")
        self.assertEqual(row["created_at"], T0)
        self.assertEqual(row["updated_at"], T0)

    def test_same_record_twice_converges(self) -> None:
        existing = merge_package(None, _record(), T0)
        row = merge_package(existing, _record(), T1)

        for key, value in row.items():
            self.assertEqual(existing[key], value, key)

    def test_star_change_alone_keeps_updated_at(self) -> None:
        existing = merge_package(None, _record(), T0)
        row = merge_package(existing, _record(github_stars=99), T1)

        self.assertEqual(row["github_stars"], 99)
        self.assertEqual(row["updated_at"], T0)

    def test_description_change_moves_updated_at(self) -> None:
        existing = merge_package(None, _record(), T0)
        row = merge_package(existing, _record(description="pairings too"), T1)

        self.assertEqual(row["description"], "pairings too")
        self.assertEqual(row["updated_at"], T1)

    def test_unknown_values_do_not_erase_stored_ones(self) -> None:
        existing = merge_package(None, _record(), T0)
        partial = _record(license=None, owner_avatar_url=None, github_stars=None)

        row = merge_package(existing, partial, T1)

        self.assertEqual(row["license"], "MIT")
        self.assertEqual(row["owner_avatar_url"], "https://avatars.example/alice")
        self.assertEqual(row["github_stars"], 10)
        self.assertEqual(row["updated_at"], T0)

    def test_update_row_never_touches_store_owned_columns(self) -> None:
        existing = merge_package(None, _record(), T0)
        row = merge_package(existing, _record(description="new"), T1)

        for column in ("total_downloads", "source", "created_at", "latest_version", "latest_version_id"):
            self.assertNotIn(column, row)
