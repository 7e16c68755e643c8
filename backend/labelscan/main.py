"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import router
from .api import routes
from .services import EngineUnavailable, acquire_engine
from .config import get_settings
from . import __version__

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Warm the OCR engine on startup so the first scan is not a cold start."""
    logger.info("Starting Label Scan API...")
    settings = get_settings()

    try:
        await acquire_engine(routes.scanner.engine, settings.engine_ready_timeout_s)
        logger.info("OCR engine initialized and ready")
    except EngineUnavailable as e:
        logger.warning(f"OCR engine failed to initialize ({e}) - will retry on first request")

    logger.info(f"API ready - Version {__version__}")

    yield

    logger.info("Shutting down Label Scan API...")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="""
## Bottle Label Scan API

Reads wine and spirits labels for the scanning app.

### Features
- **Label OCR**: Photo in, brand / product / category / ABV / volume / vintage out
- **Retry**: Low-yield reads are retried on a binarized variant
- **Vision Assist**: Optional LLM identification of the bottle
- **Barcode**: OpenFoodFacts lookup

### Quick Start
1. Use `/health` to check API status
2. Use `/scan` to read a label photo
3. Use `/barcode/{barcode}` for scanned barcodes
        """,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "message": "Label Scan API",
            "version": __version__,
            "docs": "/docs"
        }

    return app


# Create app instance
app = create_app()
