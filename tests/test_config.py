import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from noir_registry.cli.config import (
    DEFAULT_REGISTRY_URL,
    REGISTRY_URL_ENV_VAR,
    config_path,
    resolve_registry_url,
)
from noir_registry.config import Settings, normalize_database_url


class TestResolveRegistryUrl(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.config_file = Path(self._tmp.name) / "config.toml"
        self.config_file.write_text('registry_url = "https://from-config.example/api"\n')

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_flag_wins(self) -> None:
        with patch.dict(os.environ, {REGISTRY_URL_ENV_VAR: "https://from-env.example/api"}):
            self.assertEqual(
                resolve_registry_url("https://from-flag.example/api", self.config_file),
                "https://from-flag.example/api",
            )

    def test_env_beats_config_file(self) -> None:
        with patch.dict(os.environ, {REGISTRY_URL_ENV_VAR: "https://from-env.example/api"}):
            self.assertEqual(resolve_registry_url(None, self.config_file), "https://from-env.example/api")

    def test_config_file_then_default(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(resolve_registry_url(None, self.config_file), "https://from-config.example/api")
            self.assertEqual(
                resolve_registry_url(None, Path(self._tmp.name) / "missing.toml"),
                DEFAULT_REGISTRY_URL,
            )

    def test_broken_config_file_is_ignored(self) -> None:
        self.config_file.write_text("registry_url = ")
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(resolve_registry_url(None, self.config_file), DEFAULT_REGISTRY_URL)

    def test_config_path_honours_xdg(self) -> None:
        with patch.dict(os.environ, {"XDG_CONFIG_HOME": self._tmp.name}):
            self.assertEqual(config_path(), Path(self._tmp.name) / "noir-registry" / "config.toml")


class TestSettings(unittest.TestCase):
    def test_normalize_database_url(self) -> None:
        self.assertEqual(
            normalize_database_url("postgres://u:p@db:5432/noir"),
            "postgresql+asyncpg://u:p@db:5432/noir",
        )
        self.assertEqual(
            normalize_database_url("sqlite+aiosqlite:///registry.db"),
            "sqlite+aiosqlite:///registry.db",
        )

    @patch("noir_registry.config.load_dotenv")
    def test_from_env(self, _load_dotenv) -> None:
        env = {
            "DATABASE_URL": "postgresql://u:p@db/noir",
            "ALLOWED_ORIGINS": "https://a.example, https://b.example",
            "PORT": "9000",
            "ENVIRONMENT": "production",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.database_url, "postgresql+asyncpg://u:p@db/noir")
        self.assertEqual(settings.allowed_origins, ["https://a.example", "https://b.example"])
        self.assertEqual(settings.port, 9000)
        self.assertTrue(settings.is_production)
        self.assertIsNone(settings.github_token)

    @patch("noir_registry.config.load_dotenv")
    def test_missing_database_url_raises(self, _load_dotenv) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ValueError):
                Settings.from_env()
