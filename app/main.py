from __future__ import annotations
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from app.api import router
from app.web import router as web_router
from logging_config import configure_logging
from services.plugin import build_default_plugin


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    plugin = build_default_plugin()
    try:
        yield
    finally:
        plugin.shutdown()
        build_default_plugin.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Purple Air Explorer",
        description="Location search and air-quality sensor history with derived AQI.",
        version="0.1.0",
        lifespan=lifespan,
    )
    static_dir = Path(__file__).resolve().parent.parent / "static"
    app.mount("/static", StaticFiles(directory=static_dir), name="static")
    app.include_router(router)
    app.include_router(web_router)
    return app

app = create_app()
