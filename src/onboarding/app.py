"""
Onboarding Web API - FastAPI application.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from onboarding import __version__
from onboarding.api import router as onboarding_router, sessions
from onboarding.config import settings

logger = logging.getLogger(__name__)

app = FastAPI(title="Restaurant Onboarding", version=__version__)


@app.on_event("startup")
async def startup_event():
    """Log configuration on startup."""
    logger.info("Onboarding API starting up...")
    logger.info(f"  Environment: {settings.onboarding_env}")
    logger.info(f"  Storage backend: {settings.storage_backend}")
    logger.info(f"  Save debounce: {settings.save_debounce_seconds}s")


@app.on_event("shutdown")
async def shutdown_event():
    """Flush every open draft before the process exits."""
    for user_id, session in list(sessions.items()):
        if not await session.repository.close():
            logger.warning(f"Draft for {user_id} had unsaved changes at shutdown")
    sessions.clear()


# CORS middleware for the wizard frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(onboarding_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}
