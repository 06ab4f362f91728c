import unittest

from noir_registry.domain.exceptions import MalformedRepositoryUrlError
from noir_registry.domain.models import CuratedEntry
from noir_registry.infrastructure.acl import GitHubTranslator, parse_repository_url


class TestGitHubTranslator(unittest.TestCase):
    def test_to_domain_parses_owner_stars_and_license(self) -> None:
        raw_repo = {
            "name": "noir-bignum",
            "owner": {"login": "noir-lang", "avatar_url": "https://avatars.example/noir-lang"},
            "stargazers_count": 123,
            "license": {"spdx_id": "MIT"},
            "homepage": "https://noir-lang.org",
            "topics": ["bignum", "noir"],
        }

        metadata = GitHubTranslator.to_domain(raw_repo)

        self.assertEqual(metadata.owner_login, "noir-lang")
        self.assertEqual(metadata.owner_avatar_url, "https://avatars.example/noir-lang")
        self.assertEqual(metadata.stars, 123)
        self.assertEqual(metadata.license, "MIT")
        self.assertEqual(metadata.homepage, "https://noir-lang.org")
        self.assertEqual(metadata.topics, ["bignum", "noir"])

    def test_unrecognised_license_and_empty_homepage_become_none(self) -> None:
        raw_repo = {
            "owner": {"login": "octocat"},
            "stargazers_count": 0,
            "license": {"spdx_id": "NOASSERTION"},
            "homepage": "",
        }

        metadata = GitHubTranslator.to_domain(raw_repo)

        self.assertIsNone(metadata.license)
        self.assertIsNone(metadata.homepage)
        self.assertEqual(metadata.topics, [])

    def test_non_object_payload_raises_value_error(self) -> None:
        for payload in ([], "Not Found", None):
            with self.subTest(payload=payload):
                with self.assertRaises(ValueError):
                    GitHubTranslator.to_domain(payload)

    def test_missing_owner_login_raises(self) -> None:
        with self.assertRaises(ValueError):
            GitHubTranslator.to_domain({"stargazers_count": 3})

    def test_to_record_without_metadata_keeps_curated_fields_only(self) -> None:
        entry = CuratedEntry(
            name="ec-crypto",
            github_url="https://github.com/alice/ec-crypto",
            description="elliptic curve crypto",
        )

        record = GitHubTranslator.to_record(entry, owner="alice")

        self.assertEqual(record.owner_github_username, "alice")
        self.assertEqual(record.description, "elliptic curve crypto")
        self.assertIsNone(record.github_stars)
        self.assertIsNone(record.license)


class TestParseRepositoryUrl(unittest.TestCase):
    def test_plain_repository_url(self) -> None:
        self.assertEqual(
            parse_repository_url("https://github.com/noir-lang/noir-bignum"),
            ("github.com", "noir-lang", "noir-bignum"),
        )

    def test_git_suffix_trailing_path_and_case_of_host(self) -> None:
        self.assertEqual(
            parse_repository_url("https://GitHub.com/noir-lang/noir-bignum.git/tree/main/lib"),
            ("github.com", "noir-lang", "noir-bignum"),
        )

    def test_malformed_urls_raise(self) -> None:
        for url in (
            "https://github.com/noir-lang",
            "github.com/noir-lang/noir-bignum",
            "not a url",
            "https://github.com/../etc",
        ):
            with self.subTest(url=url):
                with self.assertRaises(MalformedRepositoryUrlError):
                    parse_repository_url(url)
