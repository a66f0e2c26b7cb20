"""Maker API routes."""
from fastapi import APIRouter

from voxelhub.api.maker import routes_maker

router = APIRouter()

router.include_router(routes_maker.router, prefix="/maker", tags=["maker"])
