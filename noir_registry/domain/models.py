from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

# Provenance tags stored in packages.source
SOURCE_CURATED_INDEX = "awesome-noir"
SOURCE_PUBLISHED = "published"


class SortOrder(str, Enum):
    """Orderings accepted by the list and search queries."""
    STARS = "stars"
    NAME = "name"
    CREATED = "created"
    UPDATED = "updated"


class CuratedEntry(BaseModel):
    """
    One `- [name](url) - description` line of the curated index.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Registry name as written in the curated list")
    github_url: str = Field(..., min_length=1, description="Source repository URL")
    description: Optional[str] = Field(None, description="Short description following the link")
    section: Optional[str] = Field(None, description="Nearest markdown heading above the entry")


class RepositoryMetadata(BaseModel):
    """
    Immutable view of the GitHub repository fields the registry cares about.
    """
    model_config = ConfigDict(frozen=True)

    owner_login: str = Field(..., description="Login name of the repository owner")
    owner_avatar_url: Optional[str] = None
    stars: int = Field(0, ge=0, description="Total number of stargazers")
    license: Optional[str] = Field(None, description="SPDX identifier of the license")
    homepage: Optional[str] = None
    topics: List[str] = Field(default_factory=list)


class PackageRecord(BaseModel):
    """
    Incoming package data produced by ingestion. Optional fields left as None
    mean "unknown", never "clear the stored value".
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    github_repository_url: str = Field(..., min_length=1)
    owner_github_username: str = Field(..., min_length=1)
    description: Optional[str] = None
    homepage: Optional[str] = None
    license: Optional[str] = None
    owner_avatar_url: Optional[str] = None
    github_stars: Optional[int] = Field(None, ge=0)
    source: str = SOURCE_CURATED_INDEX


class VersionRecord(BaseModel):
    """A release to be recorded against an existing package."""
    model_config = ConfigDict(frozen=True)

    version: str = Field(..., min_length=1)
    readme: Optional[str] = None
    changelog: Optional[str] = None
    noir_version_requirement: Optional[str] = None
    download_url: Optional[str] = None
    checksum: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    published_at: Optional[datetime] = None


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    slug: str
    description: Optional[str] = None


class PackageVersion(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    package_id: int
    version: str
    readme: Optional[str] = None
    changelog: Optional[str] = None
    noir_version_requirement: Optional[str] = None
    download_url: Optional[str] = None
    checksum: Optional[str] = None
    file_size: Optional[int] = None
    downloads: int = 0
    published_at: Optional[datetime] = None


class Package(BaseModel):
    """
    A stored package row.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None
    github_repository_url: str
    homepage: Optional[str] = None
    license: Optional[str] = None
    owner_github_username: str
    owner_avatar_url: Optional[str] = None
    total_downloads: int = 0
    github_stars: int = 0
    latest_version: Optional[str] = None
    latest_version_id: Optional[int] = None
    source: Optional[str] = None
    published_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PackageSummary(Package):
    """Package row plus its keywords and category slug, as served by list and search."""
    keywords: List[str] = Field(default_factory=list)
    category: Optional[str] = None


class PackageDetail(PackageSummary):
    """Everything the registry knows about one package, newest version first."""
    versions: List[PackageVersion] = Field(default_factory=list)


class IngestionReport(BaseModel):
    """
    Counters for one ingestion run.

    `partial` counts entries persisted without full GitHub metadata; they are
    also counted in `inserted` or `updated`.
    """
    found: int = 0
    enriched: int = 0
    partial: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    failures: List[str] = Field(default_factory=list)
