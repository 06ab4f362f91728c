from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from noir_registry.domain.models import PackageRecord

# Fields ingestion owns. Everything else on the row (downloads, source,
# latest version pointer, publisher, created_at) is left as stored.
# github_stars is refreshed too but a change there alone keeps updated_at.
MUTABLE_FIELDS = (
    "description",
    "github_repository_url",
    "homepage",
    "license",
    "owner_github_username",
    "owner_avatar_url",
)


def merge_package(
    existing: Optional[Mapping[str, Any]],
    incoming: PackageRecord,
    now: datetime,
) -> Dict[str, Any]:
    """
    Computes the row to persist for `incoming` given the currently stored row.

    The result depends only on its arguments, so applying the same record twice
    converges on the same row regardless of run order.

    Args:
        existing: The stored row for `incoming.name`, or None if absent.
        incoming: The freshly ingested record.
        now: Timestamp used for created_at/updated_at when they must move.

    Returns:
        Dict[str, Any]: Column values for an insert (when `existing` is None)
        or an update of the ingestion-owned columns.
    """
    if existing is None:
        return {
            "name": incoming.name,
            "description": incoming.description,
            "github_repository_url": incoming.github_repository_url,
            "homepage": incoming.homepage,
            "license": incoming.license,
            "owner_github_username": incoming.owner_github_username,
            "owner_avatar_url": incoming.owner_avatar_url,
            "github_stars": incoming.github_stars or 0,
            "total_downloads": 0,
            "source": incoming.source,
            "created_at": now,
            "updated_at": now,
        }

    row: Dict[str, Any] = {"name": existing["name"]}
    changed = False
    for field in MUTABLE_FIELDS:
        value = getattr(incoming, field)
        # Unknown values from a partial enrichment keep what we already have
        if value is None:
            value = existing[field]
        if value != existing[field]:
            changed = True
        row[field] = value

    stars = incoming.github_stars
    row["github_stars"] = existing["github_stars"] if stars is None else stars
    row["updated_at"] = now if changed else existing["updated_at"]
    return row
