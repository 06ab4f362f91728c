import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from noir_registry.infrastructure.index_source import AWESOME_NOIR_URL

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def configure_logging(level: str = "INFO", stream=None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(stream or sys.stdout)
        ]
    )


def normalize_database_url(url: str) -> str:
    """
    Points plain postgres URLs at the asyncpg driver, e.g.
    `postgres://u:p@host/db` -> `postgresql+asyncpg://u:p@host/db`.
    """
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


class Settings(BaseModel):
    """
    Server and ingestion settings, read from the environment (and a .env file).
    """
    database_url: str
    github_token: Optional[str] = None
    awesome_noir_url: str = AWESOME_NOIR_URL
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8080
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Raises:
            ValueError: If DATABASE_URL is not set.
        """
        load_dotenv()

        db_url = os.getenv("DATABASE_URL")
        if not db_url:
            raise ValueError("DATABASE_URL is not set in the environment.")

        origins = os.getenv("ALLOWED_ORIGINS", "*")
        return cls(
            database_url=normalize_database_url(db_url),
            github_token=os.getenv("GITHUB_TOKEN") or None,
            awesome_noir_url=os.getenv("AWESOME_NOIR_URL", AWESOME_NOIR_URL),
            allowed_origins=[o.strip() for o in origins.split(',') if o.strip()],
            port=int(os.getenv("PORT", "8080")),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
