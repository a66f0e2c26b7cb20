"""Bidding domain services: projects, bids, delivery confirmation and reviews.

Every multi-row change (accept + reject siblings, delivery confirmation +
earning, project deletion + bid rejection) runs in the request's transaction
and is committed once. Realtime events are sent only after the commit.
"""
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, List, Union

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.domain.bidding.models import (
    Bid,
    BidEdit,
    BidStatus,
    Project,
    ProjectStatus,
    Review,
)
from voxelhub.domain.bidding.state_machine import (
    InvalidTransition,
    assert_bid_transition,
    assert_project_transition,
)
from voxelhub.domain.common.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from voxelhub.domain.common.types import generate_id, to_money, utcnow
from voxelhub.domain.realtime.events import (
    EventType,
    Notifier,
    bid_event,
    delivery_confirmed_event,
)
from voxelhub.domain.settlement.models import EarningSource
from voxelhub.domain.settlement.services import EarningsLedger
from voxelhub.domain.users.models import User
from voxelhub.infra.db.repositories.bidding_repo import (
    BidRepository,
    ProjectRepository,
    ReviewRepository,
)
from voxelhub.infra.db.repositories.settlement_repo import MakerProfileRepository

logger = logging.getLogger(__name__)

MIN_BID_PRICE = Decimal("0.50")
_PRICE_RE = re.compile(r"^\d+(\.\d{1,2})?$")

Event = tuple[str, dict[str, Any]]


def parse_price(raw: Union[str, int, float, Decimal, None]) -> Decimal:
    """Parse a bid price: digits with at most two decimals, at least 0.50."""
    text = str(raw).strip() if raw is not None else ""
    if not _PRICE_RE.match(text):
        raise ValidationError("Invalid price format")
    price = to_money(text)
    if price < MIN_BID_PRICE:
        raise ValidationError("Minimum price is €0.50")
    return price


def parse_delivery_days(raw: Union[str, int, None]) -> int:
    text = str(raw).strip() if raw is not None else ""
    if not text.isdigit() or int(text) <= 0:
        raise ValidationError("Delivery days must be a positive whole number")
    return int(text)


def parse_rating(raw: Union[str, int, float, Decimal, None]) -> Decimal:
    """Ratings go from 0.5 to 5 in steps of 0.5."""
    try:
        rating = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ValidationError("Valid rating is required")
    if not rating.is_finite() or rating < Decimal("0.5") or rating > 5 or (rating * 2) % 1 != 0:
        raise ValidationError("Valid rating is required")
    return rating.quantize(Decimal("0.1"))


class ProjectService:
    """Project lifecycle for clients, and project discovery for makers."""

    def __init__(
        self,
        db: AsyncSession,
        project_repo: ProjectRepository,
        bid_repo: BidRepository,
        notifier: Notifier,
        max_active_projects: int = 10,
        max_files: int = 10,
    ):
        self.db = db
        self.project_repo = project_repo
        self.bid_repo = bid_repo
        self.notifier = notifier
        self.max_active_projects = max_active_projects
        self.max_files = max_files

    async def create_project(
        self,
        client: User,
        title: str,
        files: List[str],
        description: Optional[str] = None,
        material: Optional[str] = None,
        dimensions: Optional[str] = None,
    ) -> Project:
        """Create an active project for a client."""
        if not client.is_client:
            raise AuthorizationError("Only clients can create projects")
        if not title or not title.strip():
            raise ValidationError("Title is required")
        if not files:
            raise ValidationError("At least one file is required")
        if len(files) > self.max_files:
            raise ValidationError(f"A project can have at most {self.max_files} files")

        active = await self.project_repo.count_active_by_owner(client.id)
        if active >= self.max_active_projects:
            raise ConflictError(f"You have reached the limit of {self.max_active_projects} active projects")

        now = utcnow()
        project = await self.project_repo.create(
            Project(
                id=generate_id(),
                owner_id=client.id,
                title=title.strip(),
                description=description,
                material=material,
                dimensions=dimensions,
                files=list(files),
                status=ProjectStatus.ACTIVE,
                created_at=now,
                updated_at=now,
            )
        )
        await self.db.commit()
        logger.info("Project %s created by client %s", project.id, client.id)
        return project

    async def list_my_projects(self, client: User) -> list[tuple[Project, int]]:
        """Client's projects with the number of unread bids on each."""
        if not client.is_client:
            raise AuthorizationError("Only clients can list their projects")
        projects = await self.project_repo.list_by_owner(client.id)
        unread = await self.bid_repo.unread_counts_for_owner(client.id)
        return [(p, unread.get(p.id, 0)) for p in projects]

    async def list_available(self) -> List[Project]:
        return await self.project_repo.list_available()

    async def get_project(self, viewer: User, project_id: str) -> Project:
        """Deleted projects stay readable by their owner and by makers who bid on them."""
        project = await self.project_repo.get(project_id, include_deleted=True)
        if not project:
            raise NotFoundError("Project", project_id)
        if project.is_deleted and project.owner_id != viewer.id:
            bids = await self.bid_repo.list_by_project(project_id)
            if not any(b.maker_id == viewer.id for b in bids):
                raise NotFoundError("Project", project_id)
        return project

    async def delete_project(self, client: User, project_id: str) -> Project:
        """Soft-delete a project and reject its pending bids."""
        project = await self.project_repo.get_for_update(project_id)
        if not project or project.is_deleted:
            raise NotFoundError("Project", project_id)
        if project.owner_id != client.id:
            raise AuthorizationError("You can only delete your own projects")
        if project.status == ProjectStatus.COMPLETED:
            raise ConflictError("Completed projects cannot be deleted - they serve as proof of completion")

        rejected = await self.bid_repo.reject_pending(project.id)
        deleted_at = utcnow()
        await self.project_repo.soft_delete(project.id, deleted_at)
        await self.db.commit()
        project.deleted_at = deleted_at
        logger.info("Project %s deleted, %d pending bids rejected", project.id, len(rejected))

        for bid in rejected:
            await self.notifier.notify(bid.maker_id, bid_event(EventType.BID_REJECTED, project.id, bid.id))
        return project

    async def mark_bids_read(self, client: User, project_id: str) -> int:
        project = await self.project_repo.get(project_id)
        if not project:
            raise NotFoundError("Project", project_id)
        if project.owner_id != client.id:
            raise AuthorizationError("You can only view bids for your own projects")
        count = await self.bid_repo.mark_read(project_id)
        await self.db.commit()
        return count

    async def total_unread_bids(self, client: User) -> int:
        if not client.is_client:
            return 0
        unread = await self.bid_repo.unread_counts_for_owner(client.id)
        return sum(unread.values())


class BidService:
    """Bid lifecycle: submit, accept, reject, edit, withdraw, confirm delivery, rate."""

    def __init__(
        self,
        db: AsyncSession,
        project_repo: ProjectRepository,
        bid_repo: BidRepository,
        review_repo: ReviewRepository,
        profile_repo: MakerProfileRepository,
        ledger: EarningsLedger,
        notifier: Notifier,
    ):
        self.db = db
        self.project_repo = project_repo
        self.bid_repo = bid_repo
        self.review_repo = review_repo
        self.profile_repo = profile_repo
        self.ledger = ledger
        self.notifier = notifier

    async def _send(self, events: List[Event]) -> None:
        for user_id, event in events:
            await self.notifier.notify(user_id, event)

    async def _get_bid(self, bid_id: str) -> Bid:
        bid = await self.bid_repo.get(bid_id)
        if not bid:
            raise NotFoundError("Bid", bid_id)
        return bid

    async def submit_bid(
        self,
        maker: User,
        project_id: str,
        price: Union[str, Decimal],
        delivery_days: Union[str, int],
        message: Optional[str] = None,
    ) -> Bid:
        """Place a pending bid on an active project."""
        if not maker.is_maker:
            raise AuthorizationError("Only makers can submit bids")
        profile = await self.profile_repo.get(maker.id)
        if not profile:
            raise ConflictError("Please complete your maker profile first")

        project = await self.project_repo.get(project_id)
        if not project:
            raise NotFoundError("Project", project_id)
        if not project.accepts_bids:
            raise ConflictError("This project is no longer accepting bids")

        if await self.bid_repo.find_open_bid(maker.id, project_id):
            raise ConflictError("You already have a bid for this project")

        now = utcnow()
        bid = Bid(
            id=generate_id(),
            project_id=project_id,
            maker_id=maker.id,
            price=parse_price(price),
            delivery_days=parse_delivery_days(delivery_days),
            message=message,
            status=BidStatus.PENDING,
            is_read=False,
            created_at=now,
            updated_at=now,
        )
        try:
            bid = await self.bid_repo.create(bid)
            await self.db.commit()
        except IntegrityError:
            # a concurrent submit from the same maker won the unique index
            await self.db.rollback()
            raise ConflictError("You already have a bid for this project")

        logger.info("Bid %s submitted on project %s by maker %s", bid.id, project_id, maker.id)
        await self.notifier.notify(project.owner_id, bid_event(EventType.NEW_BID, project_id, bid.id))
        return bid

    async def accept_bid(self, client: User, bid_id: str) -> Bid:
        """Accept a bid, complete the project and reject every other pending bid.

        The project row is locked first, so concurrent accepts on one project
        are serialized; the loser sees a completed project.
        """
        if not client.is_client:
            raise AuthorizationError("Only clients can accept bids")
        bid = await self._get_bid(bid_id)

        project = await self.project_repo.get_for_update(bid.project_id)
        if not project or project.owner_id != client.id:
            raise AuthorizationError("You can only accept bids for your own projects")
        if project.is_deleted:
            raise ConflictError("Cannot accept bids for deleted projects")
        if project.status != ProjectStatus.ACTIVE:
            raise ConflictError("This project is no longer accepting bids")

        bid = await self.bid_repo.get_for_update(bid_id)
        if not bid:
            raise NotFoundError("Bid", bid_id)
        try:
            assert_bid_transition(bid.status, BidStatus.ACCEPTED)
            assert_project_transition(project.status, ProjectStatus.COMPLETED)
        except InvalidTransition:
            raise ConflictError("Can only accept pending bids")

        try:
            await self.bid_repo.update_status(bid.id, BidStatus.ACCEPTED)
            await self.project_repo.update_status(project.id, ProjectStatus.COMPLETED)
            rejected = await self.bid_repo.reject_pending(project.id, except_bid_id=bid.id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("This project is no longer accepting bids")

        bid.status = BidStatus.ACCEPTED
        logger.info(
            "Bid %s accepted on project %s, %d competing bids rejected",
            bid.id, project.id, len(rejected),
        )
        events: List[Event] = [
            (bid.maker_id, bid_event(EventType.BID_ACCEPTED, project.id, bid.id)),
        ]
        events += [(b.maker_id, bid_event(EventType.BID_REJECTED, project.id, b.id)) for b in rejected]
        await self._send(events)
        return bid

    async def reject_bid(self, client: User, bid_id: str) -> Bid:
        """Reject one bid. The project stays open."""
        if not client.is_client:
            raise AuthorizationError("Only clients can reject bids")
        bid = await self._get_bid(bid_id)
        project = await self.project_repo.get(bid.project_id, include_deleted=True)
        if not project or project.owner_id != client.id:
            raise AuthorizationError("You can only reject bids for your own projects")
        try:
            assert_bid_transition(bid.status, BidStatus.REJECTED)
        except InvalidTransition:
            raise ConflictError("Can only reject pending bids")

        await self.bid_repo.update_status(bid.id, BidStatus.REJECTED)
        await self.db.commit()
        bid.status = BidStatus.REJECTED
        await self.notifier.notify(bid.maker_id, bid_event(EventType.BID_REJECTED, project.id, bid.id))
        return bid

    async def _own_pending_bid(self, maker: User, bid_id: str, action: str) -> Bid:
        bid = await self._get_bid(bid_id)
        if bid.maker_id != maker.id:
            raise AuthorizationError(f"Only the bid creator can {action} it")
        if not bid.is_pending:
            raise ConflictError(f"Can only {action} pending bids")
        project = await self.project_repo.get(bid.project_id, include_deleted=True)
        if not project or project.is_deleted:
            raise ConflictError(f"Cannot {action} bids for deleted projects")
        return bid

    async def edit_bid(
        self,
        maker: User,
        bid_id: str,
        price: Union[str, Decimal, None] = None,
        delivery_days: Union[str, int, None] = None,
        message: Optional[str] = None,
    ) -> Bid:
        bid = await self._own_pending_bid(maker, bid_id, "edit")
        edit = BidEdit(
            price=parse_price(price) if price is not None else None,
            delivery_days=parse_delivery_days(delivery_days) if delivery_days is not None else None,
            message=message,
        )
        if edit.is_empty():
            raise ValidationError("No changes provided")
        bid = await self.bid_repo.apply_edit(bid.id, edit)
        await self.db.commit()
        return bid

    async def withdraw_bid(self, maker: User, bid_id: str) -> None:
        """Delete a pending bid; the maker may bid again afterwards."""
        bid = await self._own_pending_bid(maker, bid_id, "delete")
        project = await self.project_repo.get(bid.project_id)
        await self.bid_repo.delete(bid.id)
        await self.db.commit()
        logger.info("Bid %s withdrawn by maker %s", bid.id, maker.id)
        await self.notifier.notify(project.owner_id, bid_event(EventType.BID_DELETED, project.id, bid.id))

    async def confirm_delivery(
        self,
        client: User,
        bid_id: str,
        rating: Union[str, float, Decimal, None],
        comment: Optional[str] = None,
    ) -> Bid:
        """Confirm delivery of an accepted bid.

        In one transaction: review for the maker, maker rating refresh,
        delivery stamp, project completion, rejection of leftover pending
        bids and an earning for the bid price.
        """
        if not client.is_client:
            raise AuthorizationError("Only clients can confirm delivery")
        score = parse_rating(rating)

        bid = await self._get_bid(bid_id)
        project = await self.project_repo.get_for_update(bid.project_id)
        if not project or project.owner_id != client.id:
            raise AuthorizationError("You can only confirm delivery for your own projects")
        bid = await self.bid_repo.get_for_update(bid_id)
        if not bid:
            raise NotFoundError("Bid", bid_id)
        if bid.status != BidStatus.ACCEPTED:
            raise ConflictError("Can only confirm delivery for accepted bids")
        if bid.delivery_confirmed_at is not None:
            raise ConflictError("Delivery has already been confirmed")

        now = utcnow()
        try:
            await self.review_repo.create(
                Review(
                    id=generate_id(),
                    project_id=project.id,
                    from_user_id=client.id,
                    to_user_id=bid.maker_id,
                    rating=score,
                    comment=comment,
                    created_at=now,
                )
            )
            average, count = await self.review_repo.rating_stats(bid.maker_id)
            await self.profile_repo.update_rating(bid.maker_id, average, count)
            await self.bid_repo.confirm_delivery(bid.id, now)
            if project.status != ProjectStatus.COMPLETED:
                assert_project_transition(project.status, ProjectStatus.COMPLETED)
                await self.project_repo.update_status(project.id, ProjectStatus.COMPLETED)
            rejected = await self.bid_repo.reject_pending(project.id, except_bid_id=bid.id)
            await self.ledger.record(bid.maker_id, EarningSource.BID, bid.id, bid.price, now=now)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Delivery has already been confirmed")

        bid.delivery_confirmed_at = now
        logger.info("Delivery confirmed for bid %s, earning of %s recorded", bid.id, bid.price)
        events: List[Event] = [
            (b.maker_id, bid_event(EventType.BID_REJECTED, project.id, b.id)) for b in rejected
        ]
        events.append((
            bid.maker_id,
            delivery_confirmed_event(
                project_id=project.id,
                bid_id=bid.id,
                client_id=client.id,
                client_name=client.display_name,
                project_name=project.title,
            ),
        ))
        await self._send(events)
        return bid

    async def rate_client(
        self,
        maker: User,
        bid_id: str,
        rating: Union[str, float, Decimal, None],
        comment: Optional[str] = None,
    ) -> Review:
        """Maker's reciprocal rating of the client after delivery."""
        if not maker.is_maker:
            raise AuthorizationError("Only makers can rate clients")
        score = parse_rating(rating)
        bid = await self._get_bid(bid_id)
        if bid.maker_id != maker.id:
            raise AuthorizationError("You can only rate clients for your own bids")
        if bid.status != BidStatus.ACCEPTED or bid.delivery_confirmed_at is None:
            raise ConflictError("Delivery must be confirmed before rating the client")

        project = await self.project_repo.get(bid.project_id, include_deleted=True)
        if await self.review_repo.get_for_project(project.id, maker.id, project.owner_id):
            raise ConflictError("You have already rated this client")
        try:
            review = await self.review_repo.create(
                Review(
                    id=generate_id(),
                    project_id=project.id,
                    from_user_id=maker.id,
                    to_user_id=project.owner_id,
                    rating=score,
                    comment=comment,
                    created_at=utcnow(),
                )
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("You have already rated this client")
        return review

    async def list_bids_for_project(self, viewer: User, project_id: str) -> List[Bid]:
        """Owner sees every bid; a maker sees only their own."""
        project = await self.project_repo.get(project_id, include_deleted=True)
        if not project:
            raise NotFoundError("Project", project_id)
        bids = await self.bid_repo.list_by_project(project_id)
        if project.owner_id == viewer.id:
            return bids
        if viewer.is_maker:
            own = [b for b in bids if b.maker_id == viewer.id]
            if project.is_deleted and not own:
                raise NotFoundError("Project", project_id)
            return own
        raise AuthorizationError("You can only view bids for your own projects")

    async def list_my_bids(self, maker: User) -> list[tuple[Bid, Optional[Project]]]:
        """Maker's bids, each with its project (deleted projects included)."""
        if not maker.is_maker:
            raise AuthorizationError("Only makers have bids")
        bids = await self.bid_repo.list_by_maker(maker.id)
        projects = await self.project_repo.list_by_ids(list({b.project_id for b in bids}))
        by_id = {p.id: p for p in projects}
        return [(b, by_id.get(b.project_id)) for b in bids]
