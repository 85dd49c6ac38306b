import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from touchup_api import __version__
from touchup_api.config import Settings
from touchup_api.database import make_engine, make_session_factory
from touchup_api.routes import router
from touchup_api.square_service import SquareGateway
from touchup_api.store import MemoryReferenceStore, ReferenceStore, SqlReferenceStore

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_store(settings: Settings) -> ReferenceStore:
    if settings.database_url:
        return SqlReferenceStore(make_session_factory(make_engine(settings.database_url)))
    return MemoryReferenceStore()


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[SquareGateway] = None,
    store: Optional[ReferenceStore] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.gateway is None:
            owned = app.state.gateway = SquareGateway.from_settings(settings)
        logger.info("ark-touchup-api ready (env=%s, location=%s)", settings.square_env, settings.location_id)
        yield
        if owned is not None:
            await owned.aclose()

    app = FastAPI(title="ARK Touch-Up API", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.store = store or build_store(settings)

    @app.middleware("http")
    async def cors(request: Request, call_next):
        origin = request.headers.get("origin")
        allowed = origin is not None and origin in settings.allowed_origins
        if request.method == "OPTIONS":
            response = Response(status_code=204)
        else:
            response = await call_next(request)
        if allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        return response

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz():
        return "ok"

    app.include_router(router)
    return app


def run() -> None:
    configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
