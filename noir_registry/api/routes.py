from __future__ import annotations

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError

from noir_registry.api.dependencies import get_queries
from noir_registry.domain.models import Category, PackageDetail, PackageSummary, SortOrder
from noir_registry.infrastructure.queries import PackageQueries

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_LIMIT = 500


def _database_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}")
    return HTTPException(status_code=500, detail=f"Database error while {action}")


@router.get("/packages", response_model=List[PackageSummary])
async def list_packages(
    sort: SortOrder = SortOrder.STARS,
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1, le=MAX_LIMIT),
    queries: PackageQueries = Depends(get_queries),
) -> List[PackageSummary]:
    """
    All packages, most starred first unless `sort` says otherwise.
    """
    try:
        return await queries.list(sort=sort, keyword=keyword, category=category, limit=limit)
    except SQLAlchemyError as e:
        raise _database_error("fetching packages", e)


@router.get("/packages/{name}", response_model=PackageDetail)
async def get_package(
    name: str,
    queries: PackageQueries = Depends(get_queries),
) -> PackageDetail:
    try:
        package = await queries.get_by_name(name)
    except SQLAlchemyError as e:
        raise _database_error(f"fetching package '{name}'", e)

    if package is None:
        raise HTTPException(status_code=404, detail=f"Package '{name}' not found")
    return package


@router.get("/search", response_model=List[PackageSummary])
async def search_packages(
    q: str = Query(..., description="Substring matched against name, description and keywords"),
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    sort: SortOrder = SortOrder.STARS,
    limit: Optional[int] = Query(None, ge=1, le=MAX_LIMIT),
    queries: PackageQueries = Depends(get_queries),
) -> List[PackageSummary]:
    try:
        return await queries.search(q, keyword=keyword, category=category, sort=sort, limit=limit)
    except SQLAlchemyError as e:
        raise _database_error(f"searching packages with query '{q}'", e)


@router.get("/categories", response_model=List[Category])
async def list_categories(queries: PackageQueries = Depends(get_queries)) -> List[Category]:
    try:
        return await queries.list_categories()
    except SQLAlchemyError as e:
        raise _database_error("fetching categories", e)
