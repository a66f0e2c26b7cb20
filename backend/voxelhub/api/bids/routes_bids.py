"""Bid API routes."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Union

from fastapi import APIRouter, Depends, status

from voxelhub.api.deps import ApiModel, get_bid_service, get_current_user
from voxelhub.domain.bidding.models import Bid, Project
from voxelhub.domain.bidding.services import BidService
from voxelhub.domain.users.models import User

router = APIRouter()


class BidResponse(ApiModel):
    """Bid response."""
    id: str
    project_id: str
    maker_id: str
    price: Decimal
    delivery_days: int
    message: Optional[str]
    status: str
    is_read: bool
    created_at: datetime
    updated_at: datetime
    delivery_confirmed_at: Optional[datetime] = None

    @classmethod
    def from_bid(cls, bid: Bid) -> "BidResponse":
        return cls(
            id=bid.id,
            project_id=bid.project_id,
            maker_id=bid.maker_id,
            price=bid.price,
            delivery_days=bid.delivery_days,
            message=bid.message,
            status=bid.status.value,
            is_read=bid.is_read,
            created_at=bid.created_at,
            updated_at=bid.updated_at,
            delivery_confirmed_at=bid.delivery_confirmed_at,
        )


class MyBidResponse(BidResponse):
    """Bid with a summary of its project."""
    project_title: Optional[str] = None
    project_status: Optional[str] = None
    project_deleted: bool = False

    @classmethod
    def from_pair(cls, bid: Bid, project: Optional[Project]) -> "MyBidResponse":
        base = BidResponse.from_bid(bid).model_dump()
        return cls(
            **base,
            project_title=project.title if project else None,
            project_status=project.status.value if project else None,
            project_deleted=project.is_deleted if project else False,
        )


class EditBidRequest(ApiModel):
    """Edit bid request; omitted fields are left unchanged."""
    price: Optional[Union[str, Decimal]] = None
    delivery_days: Optional[Union[str, int]] = None
    message: Optional[str] = None


class RatingRequest(ApiModel):
    """Rating (0.5 to 5, step 0.5) with an optional comment."""
    rating: Optional[Union[str, float]] = None
    comment: Optional[str] = None


class ReviewResponse(ApiModel):
    id: str
    project_id: str
    from_user_id: str
    to_user_id: str
    rating: Decimal
    comment: Optional[str]
    created_at: datetime


class BidActionResponse(ApiModel):
    message: str
    bid: BidResponse


@router.get("/my-bids", response_model=List[MyBidResponse])
async def list_my_bids(
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """List the current maker's bids with their projects."""
    pairs = await service.list_my_bids(current_user)
    return [MyBidResponse.from_pair(bid, project) for bid, project in pairs]


@router.put("/{bid_id}/accept", response_model=BidActionResponse)
async def accept_bid(
    bid_id: str,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """Accept a bid; every other pending bid on the project is rejected."""
    bid = await service.accept_bid(current_user, bid_id)
    return BidActionResponse(message="Bid accepted successfully", bid=BidResponse.from_bid(bid))


@router.put("/{bid_id}/reject", response_model=BidActionResponse)
async def reject_bid(
    bid_id: str,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    bid = await service.reject_bid(current_user, bid_id)
    return BidActionResponse(message="Bid rejected successfully", bid=BidResponse.from_bid(bid))


@router.patch("/{bid_id}", response_model=BidActionResponse)
async def edit_bid(
    bid_id: str,
    request: EditBidRequest,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """Edit a pending bid."""
    bid = await service.edit_bid(
        current_user,
        bid_id,
        price=request.price,
        delivery_days=request.delivery_days,
        message=request.message,
    )
    return BidActionResponse(message="Bid updated successfully", bid=BidResponse.from_bid(bid))


@router.delete("/{bid_id}")
async def withdraw_bid(
    bid_id: str,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """Withdraw a pending bid."""
    await service.withdraw_bid(current_user, bid_id)
    return {"message": "Bid deleted successfully"}


@router.put("/{bid_id}/confirm-delivery", response_model=BidActionResponse)
async def confirm_delivery(
    bid_id: str,
    request: RatingRequest,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """Confirm delivery and rate the maker."""
    bid = await service.confirm_delivery(current_user, bid_id, request.rating, request.comment)
    return BidActionResponse(message="Delivery confirmed successfully", bid=BidResponse.from_bid(bid))


@router.put("/{bid_id}/rate-client", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def rate_client(
    bid_id: str,
    request: RatingRequest,
    current_user: User = Depends(get_current_user),
    service: BidService = Depends(get_bid_service),
):
    """Maker rates the client after delivery was confirmed."""
    review = await service.rate_client(current_user, bid_id, request.rating, request.comment)
    return ReviewResponse(
        id=review.id,
        project_id=review.project_id,
        from_user_id=review.from_user_id,
        to_user_id=review.to_user_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at,
    )
