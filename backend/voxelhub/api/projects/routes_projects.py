"""Project API routes."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Union

from fastapi import APIRouter, Depends, status

from voxelhub.api.bids.routes_bids import BidResponse
from voxelhub.api.deps import (
    ApiModel,
    get_bid_service,
    get_current_user,
    get_project_service,
)
from voxelhub.domain.bidding.models import Project
from voxelhub.domain.bidding.services import BidService, ProjectService
from voxelhub.domain.users.models import User

router = APIRouter()


class ProjectRequest(ApiModel):
    """Create project request. Files are object-store keys of uploaded STL files."""
    title: str
    files: List[str]
    description: Optional[str] = None
    material: Optional[str] = None
    dimensions: Optional[str] = None


class ProjectResponse(ApiModel):
    """Project response."""
    id: str
    owner_id: str
    title: str
    description: Optional[str]
    material: Optional[str]
    dimensions: Optional[str]
    files: List[str]
    status: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    unread_bids: Optional[int] = None

    @classmethod
    def from_project(cls, project: Project, unread_bids: Optional[int] = None) -> "ProjectResponse":
        return cls(
            id=project.id,
            owner_id=project.owner_id,
            title=project.title,
            description=project.description,
            material=project.material,
            dimensions=project.dimensions,
            files=project.files,
            status=project.status.value,
            created_at=project.created_at,
            updated_at=project.updated_at,
            deleted_at=project.deleted_at,
            unread_bids=unread_bids,
        )


class BidRequest(ApiModel):
    """Submit bid request. Price is validated as text so '12.345' is rejected, not rounded."""
    price: Union[str, Decimal]
    delivery_days: Union[str, int]
    message: Optional[str] = None


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectRequest,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """Create a project."""
    project = await service.create_project(
        current_user,
        title=request.title,
        files=request.files,
        description=request.description,
        material=request.material,
        dimensions=request.dimensions,
    )
    return ProjectResponse.from_project(project)


@router.get("/my-projects", response_model=List[ProjectResponse])
async def list_my_projects(
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """List the current client's projects with unread bid counts."""
    pairs = await service.list_my_projects(current_user)
    return [ProjectResponse.from_project(p, unread) for p, unread in pairs]


@router.get("/available", response_model=List[ProjectResponse])
async def list_available_projects(
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    projects = await service.list_available()
    return [ProjectResponse.from_project(p) for p in projects]


@router.get("/total-unread-bids")
async def total_unread_bids(
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    return {"totalUnread": await service.total_unread_bids(current_user)}


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    project = await service.get_project(current_user, project_id)
    return ProjectResponse.from_project(project)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """Soft-delete a project; its pending bids are rejected."""
    await service.delete_project(current_user, project_id)
    return {"message": "Project deleted successfully"}


@router.get("/{project_id}/bids", response_model=List[BidResponse])
async def list_project_bids(
    project_id: str,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    bids = await service.list_bids_for_project(current_user, project_id)
    return [BidResponse.from_bid(b) for b in bids]


@router.put("/{project_id}/mark-bids-read")
async def mark_bids_read(
    project_id: str,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    updated = await service.mark_bids_read(current_user, project_id)
    return {"message": "Bids marked as read", "updated": updated}


@router.post("/{project_id}/bids", response_model=BidResponse, status_code=status.HTTP_201_CREATED)
async def submit_bid(
    project_id: str,
    request: BidRequest,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """Submit a bid on an active project."""
    bid = await service.submit_bid(
        current_user,
        project_id,
        price=request.price,
        delivery_days=request.delivery_days,
        message=request.message,
    )
    return BidResponse.from_bid(bid)
