"""API dependencies."""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.domain.bidding.services import BidService, ProjectService
from voxelhub.domain.realtime.events import Notifier
from voxelhub.domain.settlement.services import (
    EarningsLedger,
    MakerProfileService,
    PayoutRunner,
    PayoutService,
)
from voxelhub.domain.users.models import User
from voxelhub.domain.users.repositories import UserRepository
from voxelhub.infra.db.repositories.bidding_repo import (
    BidRepositoryImpl,
    ProjectRepositoryImpl,
    ReviewRepositoryImpl,
)
from voxelhub.infra.db.repositories.settlement_repo import (
    EarningRepositoryImpl,
    MakerProfileRepositoryImpl,
    PayoutRepositoryImpl,
)
from voxelhub.infra.db.repositories.user_repo import UserRepositoryImpl
from voxelhub.infra.db.session import get_db
from voxelhub.infra.security.jwt import decode_token
from voxelhub.settings import settings

bearer_scheme = HTTPBearer(auto_error=False)


class ApiModel(BaseModel):
    """Request/response base: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current authenticated user."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None or payload.get("type") != "access":
        raise credentials_exception

    user_repo: UserRepository = UserRepositoryImpl(db)
    user = await user_repo.get_by_id(user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_payout_runner(request: Request) -> PayoutRunner:
    return request.app.state.payout_executor


def get_project_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> ProjectService:
    return ProjectService(
        db,
        ProjectRepositoryImpl(db),
        BidRepositoryImpl(db),
        notifier,
        max_active_projects=settings.max_active_projects_per_client,
        max_files=settings.max_files_per_project,
    )


def get_bid_service(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> BidService:
    profile_repo = MakerProfileRepositoryImpl(db)
    return BidService(
        db,
        ProjectRepositoryImpl(db),
        BidRepositoryImpl(db),
        ReviewRepositoryImpl(db),
        profile_repo,
        EarningsLedger(EarningRepositoryImpl(db), profile_repo),
        notifier,
    )


def get_profile_service(db: AsyncSession = Depends(get_db)) -> MakerProfileService:
    return MakerProfileService(db, MakerProfileRepositoryImpl(db))


def get_payout_service(
    db: AsyncSession = Depends(get_db),
    runner: PayoutRunner = Depends(get_payout_runner),
    notifier: Notifier = Depends(get_notifier),
) -> PayoutService:
    return PayoutService(
        db,
        MakerProfileRepositoryImpl(db),
        EarningRepositoryImpl(db),
        PayoutRepositoryImpl(db),
        runner,
        notifier,
        currency=settings.payout_currency,
        live_mode=not settings.is_development,
    )
