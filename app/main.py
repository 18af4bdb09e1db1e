from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.logging import setup_logging
from app.services.db import init_db
from app.services.tickets import StorageUnavailableError

settings = get_settings()
setup_logging(settings.logging.level)

app = FastAPI(title="Ticket Desk", version="0.1.0")

app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageUnavailableError)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    logger.error("Storage unavailable during {method} {path}: {error}", method=request.method, path=request.url.path, error=exc)
    return JSONResponse(status_code=503, content={"status": "error", "message": exc.user_message})


@app.on_event("startup")
async def on_startup() -> None:
    init_db()
