"""Project API routes."""
from fastapi import APIRouter

from voxelhub.api.projects import routes_projects

router = APIRouter()

router.include_router(routes_projects.router, prefix="/projects", tags=["projects"])
