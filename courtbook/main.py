from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from courtbook import settings
from courtbook.errors import install_error_handlers
from courtbook.routers import admin, booking

TORTOISE_MODULES = {"models": ["courtbook.models"]}


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules=TORTOISE_MODULES,
        generate_schemas=settings.GENERATE_SCHEMAS,
    ):
        logger.info("courtbook started: db={}", settings.db_url.split("://")[0])
        yield


def create_app() -> FastAPI:
    app = FastAPI(title="courtbook", lifespan=lifespan)
    install_error_handlers(app)
    app.include_router(booking.router)
    app.include_router(admin.router)
    return app


app = create_app()
