"""
API router configuration.
"""
from fastapi import APIRouter

from .routes import health, stream

router = APIRouter()

router.include_router(health.router)
router.include_router(stream.router)
