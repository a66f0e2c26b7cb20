"""Bid API routes."""
from fastapi import APIRouter

from voxelhub.api.bids import routes_bids

router = APIRouter()

router.include_router(routes_bids.router, prefix="/bids", tags=["bids"])
