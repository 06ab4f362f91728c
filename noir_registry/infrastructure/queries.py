from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, exists, or_, select, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from noir_registry.domain.models import (
    Category,
    PackageDetail,
    PackageSummary,
    PackageVersion,
    SortOrder,
)
from noir_registry.infrastructure.database import (
    categories_table,
    package_categories_table,
    package_keywords_table,
    package_versions_table,
    packages_table,
)

_ORDERINGS = {
    SortOrder.STARS: (packages_table.c.github_stars.desc(),),
    SortOrder.NAME: (packages_table.c.name.asc(),),
    SortOrder.CREATED: (packages_table.c.created_at.desc(),),
    SortOrder.UPDATED: (packages_table.c.updated_at.desc(),),
}

LIKE_ESCAPE = "\\"


def _escape_like(term: str) -> str:
    return (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


class PackageQueries:
    """
    Read-only queries over the package store. Holds no state besides the
    engine, so one instance can serve any number of concurrent requests.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def get_by_name(self, name: str) -> Optional[PackageDetail]:
        """
        Exact, case-sensitive lookup. Returns None when no package has this name.
        """
        async with self.engine.connect() as conn:
            row = (await conn.execute(
                select(packages_table).where(packages_table.c.name == name)
            )).mappings().first()
            if row is None:
                return None

            summary = (await self._summarize(conn, [row]))[0]
            versions = (await conn.execute(
                select(package_versions_table)
                .where(package_versions_table.c.package_id == row['id'])
                .order_by(package_versions_table.c.published_at.desc(), package_versions_table.c.id.desc())
            )).mappings().all()

        return PackageDetail(
            **summary.model_dump(),
            versions=[PackageVersion(**v) for v in versions],
        )

    async def list(
        self,
        sort: SortOrder = SortOrder.STARS,
        keyword: Optional[str] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PackageSummary]:
        return await self._select(None, sort, keyword, category, limit)

    async def search(
        self,
        term: str,
        keyword: Optional[str] = None,
        category: Optional[str] = None,
        sort: SortOrder = SortOrder.STARS,
        limit: Optional[int] = None,
    ) -> List[PackageSummary]:
        """
        Case-insensitive substring match against name, description and
        keywords. A package matches when any of them does.
        """
        pattern = f"%{_escape_like(term.strip())}%"
        match = or_(
            packages_table.c.name.ilike(pattern, escape=LIKE_ESCAPE),
            packages_table.c.description.ilike(pattern, escape=LIKE_ESCAPE),
            exists().where(
                package_keywords_table.c.package_id == packages_table.c.id,
                package_keywords_table.c.keyword.ilike(pattern, escape=LIKE_ESCAPE),
            ),
        )
        return await self._select(match, sort, keyword, category, limit)

    async def list_categories(self) -> List[Category]:
        async with self.engine.connect() as conn:
            rows = (await conn.execute(
                select(categories_table).order_by(categories_table.c.name.asc())
            )).mappings().all()
        return [Category(**row) for row in rows]

    async def _select(self, match, sort, keyword, category, limit) -> List[PackageSummary]:
        conditions = [] if match is None else [match]
        if keyword:
            conditions.append(exists().where(
                package_keywords_table.c.package_id == packages_table.c.id,
                package_keywords_table.c.keyword == keyword.strip().lower(),
            ))
        if category:
            conditions.append(exists().where(
                package_categories_table.c.package_id == packages_table.c.id,
                package_categories_table.c.category_id == categories_table.c.id,
                categories_table.c.slug == category,
            ))

        stmt = select(packages_table)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        # Package id breaks ties so equal sort keys come back in a fixed order
        stmt = stmt.order_by(*_ORDERINGS[SortOrder(sort)], packages_table.c.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
            return await self._summarize(conn, rows)

    async def _summarize(self, conn: AsyncConnection, rows: Sequence) -> List[PackageSummary]:
        if not rows:
            return []
        ids = [row['id'] for row in rows]

        keywords: Dict[int, List[str]] = {}
        result = await conn.execute(
            select(package_keywords_table.c.package_id, package_keywords_table.c.keyword)
            .where(package_keywords_table.c.package_id.in_(ids))
            .order_by(package_keywords_table.c.keyword.asc())
        )
        for package_id, keyword in result:
            keywords.setdefault(package_id, []).append(keyword)

        result = await conn.execute(
            select(package_categories_table.c.package_id, categories_table.c.slug)
            .join(categories_table, categories_table.c.id == package_categories_table.c.category_id)
            .where(package_categories_table.c.package_id.in_(ids))
        )
        categories = {package_id: slug for package_id, slug in result}

        return [
            PackageSummary(
                **row,
                keywords=keywords.get(row['id'], []),
                category=categories.get(row['id']),
            )
            for row in rows
        ]
