"""Bid lifecycle tests: submit, accept cascade, edit/withdraw, delivery confirmation."""
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from starlette.websockets import WebSocketDisconnect

from voxelhub.domain.bidding.models import BidStatus, ProjectStatus
from voxelhub.domain.bidding.services import ProjectService
from voxelhub.domain.common.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from voxelhub.domain.common.types import generate_id, utcnow
from voxelhub.domain.settlement.models import EarningSource, StripeDestination
from voxelhub.domain.users.models import UserRole
from voxelhub.infra.db.repositories.bidding_repo import BidRepositoryImpl, ProjectRepositoryImpl
from voxelhub.infra.db.repositories.settlement_repo import (
    EarningRepositoryImpl,
    MakerProfileRepositoryImpl,
)
from voxelhub.infra.db.models.bidding import BidModel
from voxelhub.infra.realtime.notifier import RealtimeNotifier

from tests.conftest import FakeWebSocket, create_maker, create_user


class TestSubmitBid:
    async def test_bid_then_duplicate_is_rejected(self, bid_service, project, maker_user, client_user, notifier):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3, "Can do it in PETG too")

        assert bid.status == BidStatus.PENDING
        assert bid.price == Decimal("50.00")
        assert notifier.events == [
            (client_user.id, {"type": "new_bid", "projectId": project.id, "bidId": bid.id})
        ]

        with pytest.raises(ConflictError, match="already have a bid"):
            await bid_service.submit_bid(maker_user, project.id, "45", 2)

    async def test_rebid_after_rejection_is_a_new_bid(self, bid_service, project, maker_user, client_user):
        first = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.reject_bid(client_user, first.id)

        second = await bid_service.submit_bid(maker_user, project.id, "40", 4)

        assert second.id != first.id
        assert second.status == BidStatus.PENDING
        assert (await bid_service.bid_repo.get(first.id)).status == BidStatus.REJECTED

    async def test_rebid_while_accepted_fails(self, bid_service, project, maker_user, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.accept_bid(client_user, bid.id)

        with pytest.raises(ConflictError):
            await bid_service.submit_bid(maker_user, project.id, "40", 4)

    async def test_only_makers_bid(self, bid_service, project, client_user):
        with pytest.raises(AuthorizationError, match="Only makers can submit bids"):
            await bid_service.submit_bid(client_user, project.id, "50", 3)

    async def test_maker_without_profile(self, bid_service, project, db_session):
        maker = await create_user(db_session, UserRole.MAKER, "noprofile@example.com")
        with pytest.raises(ConflictError, match="complete your maker profile"):
            await bid_service.submit_bid(maker, project.id, "50", 3)

    @pytest.mark.parametrize("price", ["0.49", "abc", "12.345", "-3", ""])
    async def test_invalid_prices(self, bid_service, project, maker_user, price):
        with pytest.raises(ValidationError):
            await bid_service.submit_bid(maker_user, project.id, price, 3)

    async def test_minimum_price_accepted(self, bid_service, project, maker_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "0.50", 1)
        assert bid.price == Decimal("0.50")

    async def test_invalid_delivery_days(self, bid_service, project, maker_user):
        with pytest.raises(ValidationError):
            await bid_service.submit_bid(maker_user, project.id, "10", 0)

    async def test_unknown_project(self, bid_service, maker_user):
        with pytest.raises(NotFoundError):
            await bid_service.submit_bid(maker_user, generate_id(), "10", 2)

    async def test_project_no_longer_accepting_bids(self, bid_service, project, maker_user, second_maker, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.accept_bid(client_user, bid.id)

        with pytest.raises(ConflictError, match="no longer accepting bids"):
            await bid_service.submit_bid(second_maker, project.id, "30", 3)

    async def test_open_bid_index_blocks_concurrent_duplicate(self, db_session, project, maker_user):
        """The partial unique index is the last line when two submits race past the read check."""
        now = utcnow()
        for _ in range(2):
            db_session.add(BidModel(
                id=generate_id(), project_id=project.id, maker_id=maker_user.id,
                price=Decimal("10.00"), delivery_days=2, status=BidStatus.PENDING,
                is_read=False, created_at=now, updated_at=now,
            ))
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()


class TestAcceptBid:
    async def test_accept_cascades_to_siblings(
        self, bid_service, project, maker_user, second_maker, third_maker, client_user, notifier
    ):
        b1 = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        b2 = await bid_service.submit_bid(second_maker, project.id, "45", 5)
        b3 = await bid_service.submit_bid(third_maker, project.id, "60", 2)
        notifier.events.clear()

        accepted = await bid_service.accept_bid(client_user, b1.id)

        assert accepted.status == BidStatus.ACCEPTED
        statuses = {b.id: b.status for b in await bid_service.bid_repo.list_by_project(project.id)}
        assert statuses == {b1.id: BidStatus.ACCEPTED, b2.id: BidStatus.REJECTED, b3.id: BidStatus.REJECTED}
        assert (await bid_service.project_repo.get(project.id)).status == ProjectStatus.COMPLETED

        assert notifier.of_type("bid_accepted") == [
            (maker_user.id, {"type": "bid_accepted", "projectId": project.id, "bidId": b1.id})
        ]
        assert {u for u, _ in notifier.of_type("bid_rejected")} == {second_maker.id, third_maker.id}
        assert len(notifier.events) == 3

    async def test_dead_socket_does_not_break_accept(
        self, bid_service, project, maker_user, second_maker, third_maker, client_user
    ):
        b1 = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.submit_bid(second_maker, project.id, "45", 5)
        await bid_service.submit_bid(third_maker, project.id, "60", 2)
        realtime = RealtimeNotifier()
        realtime.register(maker_user.id, FakeWebSocket(fail_with=WebSocketDisconnect(code=1006)))
        sockets = {m.id: FakeWebSocket() for m in (second_maker, third_maker)}
        for user_id, ws in sockets.items():
            realtime.register(user_id, ws)
        bid_service.notifier = realtime

        accepted = await bid_service.accept_bid(client_user, b1.id)

        assert accepted.status == BidStatus.ACCEPTED
        assert [[e["type"] for e in ws.sent] for ws in sockets.values()] == [["bid_rejected"], ["bid_rejected"]]
        assert maker_user.id not in realtime.connections

    async def test_second_accept_on_same_project_fails(
        self, bid_service, project, maker_user, second_maker, client_user
    ):
        b1 = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        b2 = await bid_service.submit_bid(second_maker, project.id, "45", 5)
        await bid_service.accept_bid(client_user, b1.id)

        with pytest.raises(ConflictError):
            await bid_service.accept_bid(client_user, b2.id)

        bids = await bid_service.bid_repo.list_by_project(project.id)
        assert [b.id for b in bids if b.status == BidStatus.ACCEPTED] == [b1.id]

    async def test_accept_same_bid_twice_fails(self, bid_service, project, maker_user, client_user):
        b1 = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.accept_bid(client_user, b1.id)
        with pytest.raises(ConflictError):
            await bid_service.accept_bid(client_user, b1.id)

    async def test_one_accepted_bid_index(self, db_session, project, maker_user, second_maker):
        """Even a write that skips the service cannot accept two bids on one project."""
        now = utcnow()
        for maker in (maker_user, second_maker):
            db_session.add(BidModel(
                id=generate_id(), project_id=project.id, maker_id=maker.id,
                price=Decimal("10.00"), delivery_days=2, status=BidStatus.ACCEPTED,
                is_read=False, created_at=now, updated_at=now,
            ))
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    async def test_only_owner_accepts(self, bid_service, project, maker_user, other_client):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        with pytest.raises(AuthorizationError, match="your own projects"):
            await bid_service.accept_bid(other_client, bid.id)

    async def test_maker_cannot_accept(self, bid_service, project, maker_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        with pytest.raises(AuthorizationError, match="Only clients can accept bids"):
            await bid_service.accept_bid(maker_user, bid.id)

    async def test_unknown_bid(self, bid_service, client_user):
        with pytest.raises(NotFoundError):
            await bid_service.accept_bid(client_user, generate_id())


class TestRejectBid:
    async def test_reject_keeps_project_open(self, bid_service, project, maker_user, client_user, notifier):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)

        rejected = await bid_service.reject_bid(client_user, bid.id)

        assert rejected.status == BidStatus.REJECTED
        assert (await bid_service.project_repo.get(project.id)).status == ProjectStatus.ACTIVE
        assert notifier.of_type("bid_rejected") == [
            (maker_user.id, {"type": "bid_rejected", "projectId": project.id, "bidId": bid.id})
        ]

    async def test_accepted_bid_cannot_be_rejected(self, bid_service, project, maker_user, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.accept_bid(client_user, bid.id)
        with pytest.raises(ConflictError):
            await bid_service.reject_bid(client_user, bid.id)

    async def test_only_owner_rejects(self, bid_service, project, maker_user, other_client):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        with pytest.raises(AuthorizationError):
            await bid_service.reject_bid(other_client, bid.id)


class TestEditAndWithdraw:
    async def test_edit_pending_bid(self, bid_service, project, maker_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)

        edited = await bid_service.edit_bid(maker_user, bid.id, price="42.50", message="Faster nozzle")

        assert edited.price == Decimal("42.50")
        assert edited.delivery_days == 3
        assert edited.message == "Faster nozzle"

    async def test_edit_requires_a_change(self, bid_service, project, maker_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        with pytest.raises(ValidationError):
            await bid_service.edit_bid(maker_user, bid.id)

    async def test_edit_by_other_maker(self, bid_service, project, maker_user, second_maker):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        with pytest.raises(AuthorizationError, match="Only the bid creator can edit it"):
            await bid_service.edit_bid(second_maker, bid.id, price="20")

    async def test_edit_accepted_bid(self, bid_service, project, maker_user, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.accept_bid(client_user, bid.id)
        with pytest.raises(ConflictError, match="Can only edit pending bids"):
            await bid_service.edit_bid(maker_user, bid.id, price="20")

    async def test_withdraw_allows_fresh_bid(self, bid_service, project, maker_user, client_user, notifier):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)

        await bid_service.withdraw_bid(maker_user, bid.id)

        assert await bid_service.bid_repo.get(bid.id) is None
        assert notifier.of_type("bid_deleted") == [
            (client_user.id, {"type": "bid_deleted", "projectId": project.id, "bidId": bid.id})
        ]
        again = await bid_service.submit_bid(maker_user, project.id, "48", 3)
        assert again.status == BidStatus.PENDING

    async def test_withdraw_rejected_bid(self, bid_service, project, maker_user, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.reject_bid(client_user, bid.id)
        with pytest.raises(ConflictError, match="Can only delete pending bids"):
            await bid_service.withdraw_bid(maker_user, bid.id)


class TestProjects:
    async def test_create_requires_client(self, project_service, maker_user):
        with pytest.raises(AuthorizationError, match="Only clients can create projects"):
            await project_service.create_project(maker_user, "Vase", files=["a.stl"])

    async def test_file_bounds(self, project_service, client_user):
        with pytest.raises(ValidationError):
            await project_service.create_project(client_user, "Vase", files=[])
        with pytest.raises(ValidationError):
            await project_service.create_project(client_user, "Vase", files=[f"{i}.stl" for i in range(11)])

    async def test_active_project_cap(self, db_session, client_user, notifier):
        service = ProjectService(
            db_session, ProjectRepositoryImpl(db_session), BidRepositoryImpl(db_session), notifier,
            max_active_projects=2,
        )
        await service.create_project(client_user, "One", files=["1.stl"])
        await service.create_project(client_user, "Two", files=["2.stl"])
        with pytest.raises(ConflictError, match="limit of 2 active projects"):
            await service.create_project(client_user, "Three", files=["3.stl"])

    async def test_delete_rejects_pending_bids(
        self, project_service, bid_service, project, maker_user, second_maker, client_user, notifier
    ):
        b1 = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        b2 = await bid_service.submit_bid(second_maker, project.id, "45", 5)
        notifier.events.clear()

        await project_service.delete_project(client_user, project.id)

        assert await project_service.list_available() == []
        assert {b.status for b in await bid_service.bid_repo.list_by_project(project.id)} == {BidStatus.REJECTED}
        assert {u for u, _ in notifier.of_type("bid_rejected")} == {maker_user.id, second_maker.id}
        # still readable for bidders and the owner
        assert (await project_service.get_project(maker_user, project.id)).is_deleted
        assert (await project_service.get_project(client_user, project.id)).id == project.id
        with pytest.raises(ConflictError):
            await bid_service.edit_bid(maker_user, b1.id, price="10")

    async def test_completed_project_cannot_be_deleted(
        self, project_service, bid_service, project, maker_user, client_user
    ):
        bid = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.accept_bid(client_user, bid.id)
        with pytest.raises(ConflictError, match="proof of completion"):
            await project_service.delete_project(client_user, project.id)

    async def test_unread_counts(self, project_service, bid_service, project, maker_user, second_maker, client_user):
        await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.submit_bid(second_maker, project.id, "45", 5)

        assert await project_service.total_unread_bids(client_user) == 2
        [(listed, unread)] = await project_service.list_my_projects(client_user)
        assert listed.id == project.id and unread == 2

        assert await project_service.mark_bids_read(client_user, project.id) == 2
        assert await project_service.total_unread_bids(client_user) == 0

    async def test_maker_sees_only_own_bids(self, bid_service, project, maker_user, second_maker, client_user):
        own = await bid_service.submit_bid(maker_user, project.id, "50", 3)
        await bid_service.submit_bid(second_maker, project.id, "45", 5)

        assert len(await bid_service.list_bids_for_project(client_user, project.id)) == 2
        assert [b.id for b in await bid_service.list_bids_for_project(maker_user, project.id)] == [own.id]
        [(bid, proj)] = await bid_service.list_my_bids(maker_user)
        assert bid.id == own.id and proj.title == "Gear housing"


class TestConfirmDelivery:
    async def test_confirm_delivery_records_review_and_earning(
        self, bid_service, project, db_session, client_user, notifier
    ):
        maker = await create_maker(db_session, "stripey@example.com", StripeDestination(connect_account_id="acct_1"))
        bid = await bid_service.submit_bid(maker, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)
        notifier.events.clear()

        confirmed = await bid_service.confirm_delivery(client_user, bid.id, 4.5, "Great print")

        assert confirmed.delivery_confirmed_at is not None
        earning = await EarningRepositoryImpl(db_session).get_by_source(EarningSource.BID, bid.id)
        assert earning.amount == Decimal("30.00")
        assert earning.available_date - earning.created_at == timedelta(days=7)

        profile = await MakerProfileRepositoryImpl(db_session).get(maker.id)
        assert profile.rating == Decimal("4.50")
        assert profile.total_reviews == 1

        assert notifier.events == [(
            maker.id,
            {
                "type": "delivery_confirmed",
                "projectId": project.id,
                "bidId": bid.id,
                "clientId": client_user.id,
                "clientName": "Ana",
                "projectName": "Gear housing",
            },
        )]

    async def test_bank_or_unset_method_retains_fifteen_days(self, bid_service, project, maker_user, client_user, db_session):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)
        await bid_service.confirm_delivery(client_user, bid.id, 5)

        earning = await EarningRepositoryImpl(db_session).get_by_source(EarningSource.BID, bid.id)
        assert earning.available_date - earning.created_at == timedelta(days=15)

    async def test_confirm_is_once_only(self, bid_service, project, maker_user, client_user, db_session):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)
        await bid_service.confirm_delivery(client_user, bid.id, 5)

        with pytest.raises(ConflictError):
            await bid_service.confirm_delivery(client_user, bid.id, 4)
        assert len(await EarningRepositoryImpl(db_session).list_by_maker(maker_user.id)) == 1

    async def test_confirm_requires_accepted_bid(self, bid_service, project, maker_user, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        with pytest.raises(ConflictError, match="accepted bids"):
            await bid_service.confirm_delivery(client_user, bid.id, 5)

    @pytest.mark.parametrize("rating", [0, 0.3, 5.5, "x", None, 4.25])
    async def test_invalid_rating(self, bid_service, project, maker_user, client_user, rating):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)
        with pytest.raises(ValidationError, match="Valid rating is required"):
            await bid_service.confirm_delivery(client_user, bid.id, rating)

    async def test_only_owner_confirms(self, bid_service, project, maker_user, client_user, other_client):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)
        with pytest.raises(AuthorizationError):
            await bid_service.confirm_delivery(other_client, bid.id, 5)


class TestRateClient:
    async def test_rate_client_after_delivery(self, bid_service, project, maker_user, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)

        with pytest.raises(ConflictError, match="Delivery must be confirmed"):
            await bid_service.rate_client(maker_user, bid.id, 5)

        await bid_service.confirm_delivery(client_user, bid.id, 5)
        review = await bid_service.rate_client(maker_user, bid.id, "4.5", "Clear specs")
        assert review.to_user_id == client_user.id
        assert review.rating == Decimal("4.5")

        with pytest.raises(ConflictError, match="already rated"):
            await bid_service.rate_client(maker_user, bid.id, 3)

    async def test_only_bid_maker_rates(self, bid_service, project, maker_user, second_maker, client_user):
        bid = await bid_service.submit_bid(maker_user, project.id, "30", 3)
        await bid_service.accept_bid(client_user, bid.id)
        await bid_service.confirm_delivery(client_user, bid.id, 5)
        with pytest.raises(AuthorizationError):
            await bid_service.rate_client(second_maker, bid.id, 5)
