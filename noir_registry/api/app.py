import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from noir_registry.api import dependencies
from noir_registry.api.dependencies import get_queries, get_store
from noir_registry.api.routes import router as packages_router
from noir_registry.config import Settings, configure_logging
from noir_registry.infrastructure.queries import PackageQueries

logger = logging.getLogger(__name__)


def create_app(allowed_origins: Optional[List[str]] = None) -> FastAPI:
    app = FastAPI(
        title="Noir Package Registry",
        version="0.1.0",
        description="Registry of Noir packages collected from awesome-noir.",
    )

    origins = allowed_origins or ["*"]
    if "*" in origins:
        # Development: allow all origins
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["content-type"],
        )

    @app.on_event("startup")
    async def startup_event() -> None:
        """
        Create missing tables and seed categories before serving.
        """
        await get_store().init_db()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await get_store().dispose()

    @app.get("/health")
    async def health(queries: PackageQueries = Depends(get_queries)) -> dict:
        """
        Liveness check that also verifies the database answers.
        """
        try:
            await queries.ping()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Health check failed: {e}")
            raise HTTPException(status_code=503, detail="Database unavailable")
        return {
            "status": "healthy",
            "database": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(packages_router, prefix="/api", tags=["packages"])
    return app


def run() -> None:
    """
    Start the Uvicorn server with settings from the environment.
    """
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    dependencies.configure(settings)

    app = create_app(settings.allowed_origins)
    logger.info(f"Server starting on http://0.0.0.0:{settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
