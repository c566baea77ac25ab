from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from proxy_functions.api import router
from proxy_functions.config import settings
from proxy_functions.errors import install_error_handlers
from proxy_functions.logging_config import configure_logging
from proxy_functions.observability import RequestContextMiddleware, metrics_endpoint

logger = structlog.get_logger("proxy-functions")


@asynccontextmanager
async def lifespan(app: FastAPI):
    missing = settings.missing_secrets()
    if missing:
        # routes that need these answer 500 until they are set
        logger.warning("missing_configuration", settings=missing)
    logger.info("startup", app_name=settings.app_name, api_prefix=settings.api_prefix)
    yield


def create_app() -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    app.add_api_route("/metrics", metrics_endpoint, include_in_schema=False)
    return app


app = create_app()
