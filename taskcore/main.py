import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskcore.cache.layer import CacheLayer
from taskcore.core.config import Settings, get_settings
from taskcore.core.logging_setup import setup_logging
from taskcore.errors import TaskServiceError
from taskcore.models import utc_now
from taskcore.routers import tasks
from taskcore.services.task_service import TaskService
from taskcore.stores.factory import build_store

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, clock=utc_now) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    store = build_store(settings, clock=clock)
    cache = CacheLayer(settings)
    service = TaskService(store, cache, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await cache.init_cache()
        if settings.store_backend == "sql":
            from taskcore.database import create_db_and_tables

            await create_db_and_tables(store.engine)
        logger.info("Task service started with %s store", store.backend)
        yield
        await cache.close()
        await store.close()

    app = FastAPI(
        title="Task Management API",
        description="Task records with swappable stores and a read-through cache",
        swagger_ui_parameters={"displayRequestDuration": True},
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.task_service = service
    app.state.cache = cache

    @app.exception_handler(TaskServiceError)
    async def task_service_error_handler(
        request: Request, exc: TaskServiceError
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(tasks.router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "store": store.backend}

    @app.get("/cache/stats")
    async def cache_stats():
        return cache.get_stats()

    return app
