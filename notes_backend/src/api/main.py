"""FastAPI application main entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from .middleware import register_error_handlers
from .routes import organize
from ..services.organizer import get_organization_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup and stop background checks on shutdown."""
    service = get_organization_service()
    logger.info("Running startup: initializing organizer database...")
    service.db.initialize()
    logger.info(f"Startup complete: database ready at {service.db.db_path}")
    yield
    await service.close()


app = FastAPI(
    title="Notes Organizer API",
    description="Auto-organization engine for personal notes",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(organize.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


__all__ = ["app"]
