"""
RoofGrid API

Roof measurement and estimating: trace roof facets on an aerial image or
map, label their edges, and turn the measurement into squares, a priced
proposal and a material take-off.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import roofs
from .core.config import get_settings
from .core.logging_config import configure_logging
from .services.errors import RoofGridError

settings = get_settings()
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Roof measurement, edge labeling and estimating API",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RoofGridError)
async def roofgrid_error_handler(request: Request, exc: RoofGridError):
    """Measurement input problems are client errors."""
    logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.include_router(roofs.router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    return {"status": "ok"}
