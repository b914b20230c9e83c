"""FastAPI entrypoint for the personal rankings store."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from reel_rankings.db.session import init_engine

from .dependencies import _load_settings
from .routers import api_router

logger = logging.getLogger("reel_rankings.api")

settings = _load_settings()
init_engine(settings)


app = FastAPI(
    title="Reel Rankings API",
    version="0.1.0",
    description="Authoritative store for per-user movie and TV rankings.",
)

# Mobile dev client (Expo) origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:8081", "http://127.0.0.1:8081"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["X-API-Key", "Content-Type"],
)
app.include_router(api_router)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Rankings store unavailable"})


@app.get("/", tags=["info"], summary="API metadata")
def read_index() -> dict[str, str]:
    return {
        "message": "Reel Rankings API",
        "documentation": "/docs",
        "rankings": "/users/{user_id}/rankings/{content_type}",
    }
