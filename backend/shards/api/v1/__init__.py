"""API v1 router."""

from fastapi import APIRouter

from shards.api.v1 import health

router = APIRouter(prefix="/api/v1")

router.include_router(health.router, tags=["Health"])
