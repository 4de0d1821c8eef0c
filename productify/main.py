from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from productify.db_init import init_db
from productify.errors import EngineError, StorageError
from productify.routes import backlog, habits, sessions, stats, templates


def create_app() -> FastAPI:
    logging.basicConfig(
        level=os.getenv("PRODUCTIFY_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    app = FastAPI(title="Productify Engine API", version="0.1.0")

    app.include_router(sessions.router)
    app.include_router(backlog.router)
    app.include_router(stats.router)
    app.include_router(templates.router)
    app.include_router(habits.router)

    @app.on_event("startup")
    async def _startup():
        await init_db()

    @app.exception_handler(EngineError)
    async def _engine_error_handler(request: Request, exc: EngineError):
        if isinstance(exc, StorageError):
            logging.getLogger("productify").error("Storage error on %s: %s", request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.client_detail()})

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logging.getLogger("productify").exception("Unhandled exception: %s", exc)
        return JSONResponse(status_code=500, content={"detail": "Internal error"})

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


app = create_app()
