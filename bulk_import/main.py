"""
FastAPI application entry point.

This module configures logging, builds the import pipeline on startup and
registers the import router.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.dependencies import get_pipeline
from .api.routers import imports
from .core.config import settings
from .core.logging_config import configure_logging

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the pipeline (catalog, record store, session store) before serving."""
    if os.getenv("SKIP_PIPELINE_INIT") == "1":
        logger.info("SKIP_PIPELINE_INIT=1 detected; pipeline will be built on first request")
        yield
        return

    pipeline = get_pipeline()
    logger.info(
        "Import pipeline ready: %d record types, commit mode %s",
        len(pipeline.catalog),
        pipeline.commit_mode,
    )
    yield
    expired = pipeline.sessions.sweep_expired()
    logger.info("Shutting down import pipeline (%d sessions expired on final sweep)", expired)


app = FastAPI(
    title="Bulk Import API",
    version="1.0.0",
    description="Upload CSV, Excel and JSON exports, validate them against registered record types and commit the valid rows",
    lifespan=lifespan,
)

allowed_origins = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(imports.router)


@app.get("/")
async def root():
    return {"message": "Bulk Import API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "bulk-import-api",
    }
