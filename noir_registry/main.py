import asyncio
import sys
import logging

from noir_registry.config import Settings, configure_logging
from noir_registry.infrastructure.github_client import GitHubRestClient
from noir_registry.infrastructure.database import PackageStore
from noir_registry.infrastructure.index_source import CuratedIndexSource
from noir_registry.application.ingestion_service import IngestionService

logger = logging.getLogger(__name__)

async def main() -> int:
    try:
        settings = Settings.from_env()
    except ValueError as e:
        configure_logging()
        logger.error(str(e))
        return 1

    configure_logging(settings.log_level)

    if settings.github_token:
        logger.info("Using GitHub authentication.")

    # Initialize the clients and the package store
    github_client = GitHubRestClient(token=settings.github_token)
    package_store = PackageStore(db_url=settings.database_url)
    index_source = CuratedIndexSource(url=settings.awesome_noir_url)

    ingestion_service = IngestionService(
        index_source=index_source,
        github_client=github_client,
        package_store=package_store,
    )

    try:
        await package_store.init_db()
        report = await ingestion_service.ingest()
    except KeyboardInterrupt:
        logger.info("Ingestion interrupted by user. Exiting gracefully.")
        return 130
    except Exception as e:
        logger.exception(f"An unexpected error occurred: {e}")
        return 1
    finally:
        await package_store.dispose()

    for failure in report.failures:
        logger.warning(f"Failed: {failure}")
    return 0

def run() -> None:
    sys.exit(asyncio.run(main()))

if __name__ == "__main__":
    run()
