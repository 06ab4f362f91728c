import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy import (
    Table, Column, String, Integer, DateTime, ForeignKey, Index, MetaData,
    delete, event, insert, select, update, func,
)

from noir_registry.domain.exceptions import (
    CategoryNotFoundError,
    ConflictError,
    DatabaseException,
    PackageNotFoundError,
)
from noir_registry.domain.merge import merge_package
from noir_registry.domain.models import Category, PackageRecord, VersionRecord

logger = logging.getLogger(__name__)

# SQLAlchemy core Table definitions
metadata = MetaData()

users_table = Table(
    'users', metadata,
    Column('id', Integer, primary_key=True),
    Column('github_id', Integer, unique=True, nullable=False),
    Column('github_username', String, nullable=False),
    Column('github_avatar_url', String),
    Column('api_key', String, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now()),
    Column('updated_at', DateTime(timezone=True), server_default=func.now()),
)

packages_table = Table(
    'packages', metadata,
    Column('id', Integer, primary_key=True),
    Column('name', String, unique=True, nullable=False),
    Column('description', String),
    Column('github_repository_url', String, nullable=False),
    Column('homepage', String),
    Column('license', String),
    Column('owner_github_username', String, nullable=False),
    Column('owner_avatar_url', String),
    Column('total_downloads', Integer, nullable=False, server_default='0'),
    Column('github_stars', Integer, nullable=False, server_default='0'),
    # Kept in step with package_versions by PackageStore.insert_version
    Column('latest_version', String),
    Column('latest_version_id', Integer),
    Column('source', String, server_default='awesome-noir'),
    Column('published_by', Integer, ForeignKey('users.id')),
    Column('created_at', DateTime(timezone=True), server_default=func.now()),
    Column('updated_at', DateTime(timezone=True), server_default=func.now()),
)

package_versions_table = Table(
    'package_versions', metadata,
    Column('id', Integer, primary_key=True),
    Column('package_id', Integer, ForeignKey('packages.id', ondelete='CASCADE'), nullable=False),
    Column('version', String, nullable=False),
    Column('readme', String),
    Column('changelog', String),
    Column('noir_version_requirement', String),
    Column('download_url', String),
    Column('checksum', String),
    Column('file_size', Integer),
    Column('downloads', Integer, nullable=False, server_default='0'),
    Column('published_at', DateTime(timezone=True), server_default=func.now()),
    Index('uq_package_versions_package_version', 'package_id', 'version', unique=True),
)

package_keywords_table = Table(
    'package_keywords', metadata,
    Column('package_id', Integer, ForeignKey('packages.id', ondelete='CASCADE'), primary_key=True),
    Column('keyword', String, primary_key=True),
)

categories_table = Table(
    'categories', metadata,
    Column('id', Integer, primary_key=True),
    Column('name', String, unique=True, nullable=False),
    Column('slug', String, unique=True, nullable=False),
    Column('description', String),
)

package_categories_table = Table(
    'package_categories', metadata,
    Column('package_id', Integer, ForeignKey('packages.id', ondelete='CASCADE'), primary_key=True),
    Column('category_id', Integer, ForeignKey('categories.id', ondelete='CASCADE'), primary_key=True),
)

Index('idx_packages_owner', packages_table.c.owner_github_username)
Index('idx_packages_stars', packages_table.c.github_stars.desc())
Index('idx_packages_downloads', packages_table.c.total_downloads.desc())
Index('idx_packages_published_by', packages_table.c.published_by)
Index('idx_keywords_keyword', package_keywords_table.c.keyword)
Index('idx_versions_package', package_versions_table.c.package_id)
Index('idx_package_categories_category', package_categories_table.c.category_id)

SEED_CATEGORIES = [
    {'name': 'Cryptography', 'slug': 'cryptography', 'description': 'Hashing, encryption, signatures, and crypto primitives'},
    {'name': 'Data Structures', 'slug': 'data-structures', 'description': 'Trees, arrays, sets, and other data structures'},
    {'name': 'Math', 'slug': 'math', 'description': 'Mathematical operations, number theory, and field arithmetic'},
    {'name': 'Utilities', 'slug': 'utilities', 'description': 'General-purpose helper libraries and tools'},
    {'name': 'Zero Knowledge', 'slug': 'zero-knowledge', 'description': 'ZK proof helpers, verifiers, and proof-system utilities'},
    {'name': 'Circuits', 'slug': 'circuits', 'description': 'Reusable circuit components and gadgets'},
    {'name': 'Standards', 'slug': 'standards', 'description': 'Implementations of standards (EIP, BIP, RFC, etc.)'},
]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless asked per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(db_url: str) -> AsyncEngine:
    """
    Creates the async engine shared by the store and the query engine.
    """
    engine = create_async_engine(db_url, echo=False)
    if engine.dialect.name == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset on write; naive values are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_keywords(keywords: Iterable[str]) -> list[str]:
    return sorted({k.strip().lower() for k in keywords if k and k.strip()})


class PackageStore:
    """
    Repository class for writing packages, versions, keywords and category
    links. Every public method runs in its own transaction, so a package is
    either fully written or left as it was.
    """

    def __init__(self, db_url: str = None, engine: AsyncEngine = None):
        if engine is None:
            engine = create_engine(db_url)
        self.engine = engine

    def _insert(self, table: Table):
        # ON CONFLICT is dialect specific in SQLAlchemy
        if self.engine.dialect.name == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    async def init_db(self) -> None:
        """
        Creates any missing tables and seeds the category vocabulary.
        Safe to call on every start.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
            stmt = self._insert(categories_table).values(SEED_CATEGORIES)
            await conn.execute(stmt.on_conflict_do_nothing(index_elements=['slug']))

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def upsert_package(self, record: PackageRecord) -> Tuple[int, bool]:
        """
        Inserts the package if its name is new, else updates the fields
        ingestion owns.

        Returns:
            Tuple of (package_id, inserted).
        """
        async with self.engine.begin() as conn:
            return await self._upsert(conn, record)

    async def save_entry(
        self,
        record: PackageRecord,
        keywords: Optional[Iterable[str]] = None,
        category_slug: Optional[str] = None,
    ) -> Tuple[int, bool]:
        """
        Upserts a package and replaces its keywords and category link in a
        single transaction. `keywords=None` leaves the stored keywords alone.
        """
        try:
            async with self.engine.begin() as conn:
                package_id, inserted = await self._upsert(conn, record)
                if keywords is not None:
                    await self._replace_keywords(conn, package_id, keywords)
                category = await self._category_by_slug(conn, category_slug) if category_slug else None
                await self._set_category(conn, package_id, category["id"] if category else None)
        except SQLAlchemyError as e:
            raise DatabaseException(f"Failed to save package {record.name}: {e}") from e
        return package_id, inserted

    async def insert_version(self, package_id: int, record: VersionRecord) -> int:
        """
        Records a release and moves the package's latest version pointer to
        the version with the greatest published_at.

        Raises:
            PackageNotFoundError: If the package does not exist.
            ConflictError: If the package already has this version.
        """
        values = record.model_dump()
        values['published_at'] = _as_utc(values['published_at'] or datetime.now(timezone.utc))

        try:
            async with self.engine.begin() as conn:
                await self._lock_package(conn, package_id)
                version_id = (await conn.execute(
                    insert(package_versions_table)
                    .values(package_id=package_id, **values)
                    .returning(package_versions_table.c.id)
                )).scalar_one()
                await self._refresh_latest_version(conn, package_id)
        except IntegrityError as e:
            raise ConflictError(
                f"Version {record.version} already exists for package id {package_id}"
            ) from e

        logger.info(f"Recorded version {record.version} for package id {package_id}.")
        return version_id

    async def replace_keywords(self, package_id: int, keywords: Iterable[str]) -> None:
        async with self.engine.begin() as conn:
            await self._lock_package(conn, package_id)
            await self._replace_keywords(conn, package_id, keywords)

    async def set_category(self, package_id: int, category_id: Optional[int]) -> None:
        """
        Links the package to exactly one category, or to none when
        `category_id` is None.
        """
        async with self.engine.begin() as conn:
            await self._lock_package(conn, package_id)
            if category_id is not None:
                exists = (await conn.execute(
                    select(categories_table.c.id).where(categories_table.c.id == category_id)
                )).first()
                if exists is None:
                    raise CategoryNotFoundError(f"Unknown category id {category_id}")
            await self._set_category(conn, package_id, category_id)

    async def get_category_by_slug(self, slug: str) -> Optional[Category]:
        async with self.engine.connect() as conn:
            row = await self._category_by_slug(conn, slug)
        return Category(**row) if row else None

    async def delete_package(self, package_id: int) -> bool:
        """Deletes a package; versions, keywords and category links cascade."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                delete(packages_table).where(packages_table.c.id == package_id)
            )
            return result.rowcount > 0

    async def _category_by_slug(self, conn: AsyncConnection, slug: str):
        return (await conn.execute(
            select(categories_table).where(categories_table.c.slug == slug)
        )).mappings().first()

    async def _lock_package(self, conn: AsyncConnection, package_id: int) -> None:
        row = (await conn.execute(
            select(packages_table.c.id)
            .where(packages_table.c.id == package_id)
            .with_for_update()
        )).first()
        if row is None:
            raise PackageNotFoundError(package_id=package_id)

    async def _upsert(self, conn: AsyncConnection, record: PackageRecord) -> Tuple[int, bool]:
        now = datetime.now(timezone.utc)
        existing = await self._select_for_update(conn, record.name)

        if existing is None:
            package_id = await self._insert_new(conn, merge_package(None, record, now))
            if package_id is not None:
                return package_id, True
            # A concurrent writer inserted the name since the select above; merge into its row.
            existing = await self._select_for_update(conn, record.name)

        row = merge_package(existing, record, now)
        # Only write columns that actually moved.
        changes = {column: value for column, value in row.items() if existing[column] != value}
        if changes:
            await conn.execute(
                update(packages_table)
                .where(packages_table.c.id == existing['id'])
                .values(**changes)
            )
        return existing['id'], False

    async def _select_for_update(self, conn: AsyncConnection, name: str):
        return (await conn.execute(
            select(packages_table)
            .where(packages_table.c.name == name)
            .with_for_update()
        )).mappings().first()

    async def _insert_new(self, conn: AsyncConnection, row: dict) -> Optional[int]:
        """Inserts a package row; returns None when the name is already taken."""
        stmt = (
            self._insert(packages_table)
            .values(row)
            .on_conflict_do_nothing(index_elements=['name'])
            .returning(packages_table.c.id)
        )
        return (await conn.execute(stmt)).scalar()

    async def _replace_keywords(self, conn: AsyncConnection, package_id: int, keywords: Iterable[str]) -> None:
        await conn.execute(
            delete(package_keywords_table).where(package_keywords_table.c.package_id == package_id)
        )
        values = [{'package_id': package_id, 'keyword': k} for k in normalize_keywords(keywords)]
        if values:
            await conn.execute(insert(package_keywords_table).values(values))

    async def _set_category(self, conn: AsyncConnection, package_id: int, category_id: Optional[int]) -> None:
        await conn.execute(
            delete(package_categories_table).where(package_categories_table.c.package_id == package_id)
        )
        if category_id is not None:
            await conn.execute(
                insert(package_categories_table).values(package_id=package_id, category_id=category_id)
            )

    async def _refresh_latest_version(self, conn: AsyncConnection, package_id: int) -> None:
        latest = (await conn.execute(
            select(package_versions_table.c.id, package_versions_table.c.version)
            .where(package_versions_table.c.package_id == package_id)
            .order_by(package_versions_table.c.published_at.desc(), package_versions_table.c.id.desc())
            .limit(1)
        )).first()
        await conn.execute(
            update(packages_table)
            .where(packages_table.c.id == package_id)
            .values(
                latest_version=latest.version if latest else None,
                latest_version_id=latest.id if latest else None,
                updated_at=datetime.now(timezone.utc),
            )
        )
