# resq/main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .errors import InvalidTransition, ResQError, ValidationError
from .routers import admin, mechanics, requests
from .routers import map as map_router
from .services import Services, build_services

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = build_services()
        yield
        app.state.services.close()

    app = FastAPI(
        title="ResQ Dispatch Service",
        description="Roadside assistance requests, mechanic matching and live status",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    # ────────────────────────────── CORS ──────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ────────────────────────────── ERRORS ──────────────────────────────
    @app.exception_handler(ResQError)
    async def resq_error_handler(request: Request, exc: ResQError):
        body = {"detail": exc.message, "error": exc.kind}
        if isinstance(exc, ValidationError):
            body["field"] = exc.field
        if isinstance(exc, InvalidTransition):
            body["current"] = exc.current
            body["requested"] = exc.requested
        return JSONResponse(status_code=exc.status_code, content=body)

    app.include_router(requests.router)
    app.include_router(mechanics.router)
    app.include_router(map_router.router)
    app.include_router(admin.router)

    @app.get("/")
    def health():
        return {"status": "ok", "service": "resq"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("resq.main:app", host="0.0.0.0", port=8000, reload=True)
