# FastAPI application entry point that initialises the app, installs
# the security middleware and registers API routes.

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from request_shield.core.config import Settings, settings as default_settings
from request_shield.middleware import SecurityMiddleware, SecurityShield
from request_shield.routes.auth import router as auth_router

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def create_app(settings: Settings | None = None, shield: SecurityShield | None = None) -> FastAPI:
    settings = settings or default_settings
    shield = shield or SecurityShield(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        await shield.start()
        logger.info(f"{settings.APP_NAME} started (environment={settings.ENVIRONMENT})")
        yield
        await shield.stop()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.shield = shield
    app.state.sessions = {}
    app.add_middleware(SecurityMiddleware, shield=shield)
    app.include_router(auth_router)
    return app


configure_logging(default_settings.LOG_LEVEL)
app = create_app()
