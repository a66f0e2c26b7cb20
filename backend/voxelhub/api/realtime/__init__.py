"""Realtime API routes."""
from fastapi import APIRouter

from voxelhub.api.realtime import routes_ws

router = APIRouter()

router.include_router(routes_ws.router, prefix="/realtime", tags=["realtime"])
