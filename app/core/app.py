from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.api.main import api_router
from app.services.recommendation.engine import get_recommendation_engine
from app.services.redis_service import redis_service

from .config import settings
from .version import __version__


async def _close_store() -> None:
    # The engine (and its store client) only exists once a request has needed it
    if not get_recommendation_engine.cache_info().currsize:
        return
    try:
        await get_recommendation_engine().store.close()
        logger.info("Store HTTP client closed")
    except Exception as exc:
        logger.warning(f"Failed to close store HTTP client: {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"Starting {settings.APP_NAME} v{__version__} ({settings.APP_ENV}), "
        f"cache backend: {settings.RECOMMENDATION_CACHE_BACKEND}"
    )
    yield
    await _close_store()
    await redis_service.close()


def _cors_origins() -> list[str]:
    return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]


app = FastAPI(
    title=settings.APP_NAME,
    description="Personalised item recommendations for My10 shops",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.APP_ENV == "development" else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_methods=["GET", "DELETE"],
    allow_headers=["*"],
)

app.include_router(api_router)
