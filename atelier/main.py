from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from sqlmodel import SQLModel
import redis.asyncio as redis
from atelier.api import cur_version, version_prefix
from atelier.api.routers import admin_routers, public_routers
from atelier.cache._cache import build_redis_client
from atelier.cache.sessions import SessionStore
from atelier.common.custom_exceptions import register_all_exceptions
from atelier.common.logging_setup import setup_logging, shutdown_logging
from atelier.config.settings import Settings, config_settings
from atelier.db.connection import build_engine, build_session_maker
from atelier.middlewares.identity_middleware import IdentityMiddleware
from atelier.middlewares.request_id_middleware import RequestIdMiddleware
import atelier.schema.full_schema  # noqa: F401  registers tables on SQLModel.metadata


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger = setup_logging(settings.ENV, settings.SERVICE_NAME)

    if settings.AUTO_CREATE_SCHEMA:
        # dev and tests only, deployments run alembic
        async with app.state.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    logger.info("app.startup", extra={"env": settings.ENV})
    try:
        yield
    finally:
        await app.state.redis.aclose()
        await app.state.engine.dispose()
        logger.info("app.shutdown")
        shutdown_logging()


def create_app(settings: Optional[Settings] = None, redis_client: Optional[redis.Redis] = None) -> FastAPI:
    settings = settings or config_settings

    app = FastAPI(
        title="Atelier",
        version=cur_version,
        lifespan=app_lifespan)

    # every handle the components need is built here and passed down, no module level singletons
    app.state.settings = settings
    app.state.engine = build_engine(settings)
    app.state.session_maker = build_session_maker(app.state.engine)
    app.state.redis = redis_client if redis_client is not None else build_redis_client(settings)
    app.state.session_store = SessionStore(app.state.redis, settings.SESSION_TTL_SECONDS)

    app.include_router(public_routers)
    if settings.ENABLE_ADMIN:
        app.include_router(admin_routers)  # mounts /api/v1/admin

    app.add_middleware(IdentityMiddleware, public_paths=[f"{version_prefix}/auth/login",
                                                         f"{version_prefix}/auth/register",
                                                         f"{version_prefix}/health"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app


app = create_app()
