"""
Drone Flight Telemetry - FastAPI Backend

Main application entry point and configuration.
"""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from droneflight.api.flights import router as flights_router, folder_router
from droneflight.services.repository import init_repository, get_repository


# Configure logging
logging.basicConfig(
    level=os.getenv("DRONEFLIGHT_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Default data folder (can be overridden via API or environment)
DEFAULT_DATA_FOLDER = Path("./data/flights")
DATA_FOLDER_ENV = "DRONEFLIGHT_DATA_FOLDER"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Drone Flight Telemetry Backend")

    # Initialize repository with configured folder if it exists
    repo = get_repository()
    if repo.data_folder is None:
        data_folder = Path(os.getenv(DATA_FOLDER_ENV, str(DEFAULT_DATA_FOLDER)))
        if data_folder.exists():
            init_repository(data_folder)
            logger.info(f"Initialized repository with folder: {data_folder}")
        else:
            logger.info(f"Default data folder not found: {data_folder}")
            logger.info("Use POST /folder to set data folder")

    repo = get_repository()
    logger.info(
        f"Camera: {repo.camera.hfov_deg:.1f} deg HFOV, "
        f"{repo.camera.image_width}x{repo.camera.image_height}"
    )
    logger.info(
        f"Ground reference: {repo.rules.on_ground_at.value if repo.rules.on_ground_at else 'off'}, "
        f"terrain: {type(repo.dem).__name__ if repo.dem is not None else 'none'}"
    )

    yield

    # Shutdown
    logger.info("Shutting down Drone Flight Telemetry Backend")


# Create FastAPI app
app = FastAPI(
    title="Drone Flight Telemetry",
    description="""
    Backend API for drone flight log analysis.

    ## Features
    - Ingest drone flight logs (Airdata exports or generic CSV)
    - Smooth the flight path and split it into straight legs
    - Project the camera footprint onto the ground, with optional terrain
    - Answer time, coverage and image-location queries

    ## Data Flow
    1. Set data folder via POST /folder
    2. List available flights via GET /flights
    3. Get legs and statistics via GET /flights/{id}
    4. Get steps and footprints via GET /flights/{id}/steps
    """,
    version="0.1.0",
    lifespan=lifespan,
)


# CORS middleware (allow all origins for development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(flights_router)
app.include_router(folder_router)


@app.get("/")
async def root():
    """Root endpoint - basic health check."""
    return {
        "name": "Drone Flight Telemetry",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    repo = get_repository()

    return {
        "status": "healthy",
        "data_folder": str(repo.data_folder) if repo.data_folder else None,
        "flight_count": repo.flight_count,
    }
