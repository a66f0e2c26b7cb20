"""Payout request, gating, payout method and reconciliation tests."""
import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Optional

import pytest

from voxelhub.domain.common.errors import (
    AuthorizationError,
    ConflictError,
    PaymentProviderError,
    ValidationError,
)
from voxelhub.domain.settlement.models import (
    BankDestination,
    PayPalDestination,
    PayoutMethod,
    PayoutStatus,
    StripeDestination,
)
from voxelhub.domain.settlement.services import PayoutService
from voxelhub.domain.users.models import UserRole
from voxelhub.infra.db.repositories.settlement_repo import (
    EarningRepositoryImpl,
    MakerProfileRepositoryImpl,
    PayoutRepositoryImpl,
)
from voxelhub.infra.payments.simulated import simulated_stripe
from voxelhub.services.payout_executor import PayoutExecutor

from tests.conftest import (
    RecordingNotifier,
    VALID_IBAN,
    add_earning,
    add_payout,
    create_maker,
    create_user,
    load_payout,
)

RETAINED = timedelta(days=30)


class TestRequestPayout:
    async def test_below_minimum_then_insufficient(self, payout_service, bank_maker, db_session):
        await add_earning(db_session, bank_maker.id, "15.00", RETAINED, PayoutMethod.BANK)

        with pytest.raises(ConflictError, match=r"Minimum €20.00 required for bank transfers"):
            await payout_service.request_payout(bank_maker, "15.00")
        with pytest.raises(ConflictError, match=r"Insufficient balance. Available: €15.00"):
            await payout_service.request_payout(bank_maker, "25.00")

        assert await payout_service.list_payouts(bank_maker.id) == []

    async def test_stripe_minimum(self, payout_service, stripe_maker, db_session):
        await add_earning(db_session, stripe_maker.id, "50.00", RETAINED)
        with pytest.raises(ConflictError, match=r"Minimum €10.00 required for Stripe/PayPal payouts"):
            await payout_service.request_payout(stripe_maker, "9.99")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None, ""])
    async def test_invalid_amount(self, payout_service, stripe_maker, amount):
        with pytest.raises(ValidationError, match="Invalid amount"):
            await payout_service.request_payout(stripe_maker, amount)

    async def test_method_required(self, payout_service, maker_user, db_session):
        await add_earning(db_session, maker_user.id, "50.00", RETAINED)
        with pytest.raises(ConflictError, match="configure a payout method"):
            await payout_service.request_payout(maker_user, "20")

    async def test_clients_cannot_request(self, payout_service, client_user):
        with pytest.raises(AuthorizationError):
            await payout_service.request_payout(client_user, "20")

    async def test_retained_earnings_are_not_withdrawable(self, payout_service, stripe_maker, db_session):
        await add_earning(db_session, stripe_maker.id, "50.00", timedelta(days=6), PayoutMethod.STRIPE)
        with pytest.raises(ConflictError, match=r"Available: €0.00"):
            await payout_service.request_payout(stripe_maker, "20")

    async def test_pending_payout_blocks_double_spend(self, payout_service, executor, stripe_maker, db_session):
        await add_earning(db_session, stripe_maker.id, "30.00", RETAINED)

        first = await payout_service.request_payout(stripe_maker, "30")
        with pytest.raises(ConflictError, match=r"Available: €0.00"):
            await payout_service.request_payout(stripe_maker, "30")
        await executor.drain()

        payouts = await payout_service.list_payouts(stripe_maker.id)
        assert [p.id for p in payouts] == [first.id]

    async def test_simulated_stripe_payout_completes(
        self, payout_service, executor, stripe_maker, db_session, session_factory, notifier
    ):
        await add_earning(db_session, stripe_maker.id, "40.00", RETAINED)

        payout = await payout_service.request_payout(stripe_maker, "25.50")
        assert payout.status == PayoutStatus.PENDING
        assert payout.currency == "eur"
        await executor.drain()

        settled = await load_payout(session_factory, payout.id)
        assert settled.status == PayoutStatus.COMPLETED
        assert settled.provider_reference.startswith("py_test_")
        assert settled.sent_at is not None
        assert [e["status"] for _, e in notifier.of_type("payout_status_update")] == [
            "pending", "processing", "completed",
        ]
        assert {u for u, _ in notifier.events} == {stripe_maker.id}

        balance = await payout_service.get_balance(stripe_maker.id)
        assert balance.total == Decimal("14.50")
        assert balance.available == Decimal("14.50")

    async def test_bank_payout_stays_pending(self, payout_service, executor, bank_maker, db_session, session_factory):
        await add_earning(db_session, bank_maker.id, "80.00", RETAINED, PayoutMethod.BANK)

        payout = await payout_service.request_payout(bank_maker, "50")
        await executor.drain()

        assert (await load_payout(session_factory, payout.id)).status == PayoutStatus.PENDING


class TestLiveDestinationChecks:
    def _service(self, db_session, executor, notifier):
        return PayoutService(
            db_session,
            MakerProfileRepositoryImpl(db_session),
            EarningRepositoryImpl(db_session),
            PayoutRepositoryImpl(db_session),
            executor,
            notifier,
            live_mode=True,
        )

    async def test_stripe_needs_connect_account(self, db_session, executor, notifier):
        maker = await create_maker(db_session, "s@example.com", StripeDestination(email="s@example.com"))
        await add_earning(db_session, maker.id, "50.00", RETAINED)
        with pytest.raises(ConflictError, match="connect your Stripe account"):
            await self._service(db_session, executor, notifier).request_payout(maker, "20")

    async def test_paypal_with_email_is_enough(self, db_session, executor, notifier):
        maker = await create_maker(db_session, "p@example.com", PayPalDestination(email="p@example.com"))
        await add_earning(db_session, maker.id, "50.00", RETAINED)
        payout = await self._service(db_session, executor, notifier).request_payout(maker, "20")
        await executor.drain()
        assert payout.method == PayoutMethod.PAYPAL


class TestPayoutMethod:
    async def test_bank_destination(self, profile_service, maker_user):
        profile = await profile_service.set_payout_method(
            maker_user, "bank", iban="de89 3704 0044 0532 0130 00", account_name="Maker One"
        )
        assert profile.payout_destination == BankDestination(iban=VALID_IBAN, account_name="Maker One")
        assert profile.payout_method == PayoutMethod.BANK

    async def test_invalid_iban(self, profile_service, maker_user):
        with pytest.raises(ValidationError, match="Invalid IBAN"):
            await profile_service.set_payout_method(
                maker_user, "bank", iban="DE89370400440532013001", account_name="Maker One"
            )

    async def test_invalid_method(self, profile_service, maker_user):
        with pytest.raises(ValidationError, match="Invalid payout method"):
            await profile_service.set_payout_method(maker_user, "bitcoin")

    async def test_switching_method_replaces_destination(self, profile_service, maker_user):
        await profile_service.set_payout_method(maker_user, "paypal", paypal_email="m@example.com")
        profile = await profile_service.set_payout_method(maker_user, "stripe", stripe_connect_account_id="acct_9")
        assert profile.payout_destination == StripeDestination(connect_account_id="acct_9")

    async def test_paypal_needs_receiver(self, profile_service, maker_user):
        with pytest.raises(ValidationError):
            await profile_service.set_payout_method(maker_user, "paypal")

    async def test_profile_required(self, profile_service, db_session):
        maker = await create_user(db_session, UserRole.MAKER, "bare@example.com")
        with pytest.raises(ConflictError, match="complete your maker profile"):
            await profile_service.set_payout_method(maker, "paypal", paypal_email="x@example.com")


class TestBankTransfer:
    async def test_record_bank_transfer(self, payout_service, bank_maker, db_session, notifier):
        payout = await add_payout(db_session, bank_maker.id, "30.00", PayoutStatus.PENDING, PayoutMethod.BANK)

        updated = await payout_service.record_bank_transfer(payout.id, "SEPA-2026-001", "completed")

        assert updated.status == PayoutStatus.COMPLETED
        assert updated.provider_reference == "SEPA-2026-001"
        assert notifier.events == [
            (bank_maker.id, {"type": "payout_status_update", "payoutId": payout.id, "status": "completed"})
        ]
        with pytest.raises(ConflictError, match="Cannot move payout from completed"):
            await payout_service.record_bank_transfer(payout.id, None, "failed")

    async def test_only_bank_payouts(self, payout_service, stripe_maker, db_session):
        payout = await add_payout(db_session, stripe_maker.id, "30.00", PayoutStatus.PENDING)
        with pytest.raises(ConflictError, match="Only bank payouts"):
            await payout_service.record_bank_transfer(payout.id, "ref", "completed")


class FlakyProvider:
    """Provider whose lookups fail for one reference."""

    name = "stripe"

    def __init__(self, broken_reference: Optional[str], status: PayoutStatus):
        self.broken_reference = broken_reference
        self.status = status
        self.lookups: list[str] = []

    async def submit(self, payout, destination):
        raise PaymentProviderError(self.name, "not used")

    async def fetch_status(self, reference: str, destination) -> Optional[PayoutStatus]:
        self.lookups.append(reference)
        if reference == self.broken_reference:
            raise PaymentProviderError(self.name, "timeout")
        return self.status


class StepSignalNotifier(RecordingNotifier):
    """Sets `reached` once a payout status event for `status` has been pushed."""

    def __init__(self, status: str):
        super().__init__()
        self.status = status
        self.reached = asyncio.Event()

    async def notify(self, user_id, event):
        await super().notify(user_id, event)
        if event.get("status") == self.status:
            self.reached.set()
        return True


def service_with(db_session, executor, notifier) -> PayoutService:
    return PayoutService(
        db_session,
        MakerProfileRepositoryImpl(db_session),
        EarningRepositoryImpl(db_session),
        PayoutRepositoryImpl(db_session),
        executor,
        notifier,
    )


class TestReconciliation:
    async def test_verify_settles_missed_step_once(self, stripe_maker, db_session, session_factory, notifier):
        payout = await add_payout(db_session, stripe_maker.id, "20.00", PayoutStatus.PROCESSING, reference="po_1")
        provider = FlakyProvider(None, PayoutStatus.COMPLETED)
        executor = PayoutExecutor(session_factory, notifier, {PayoutMethod.STRIPE: provider}, step_delay=0)
        payout_service = service_with(db_session, executor, notifier)

        changes = await payout_service.verify_payouts(stripe_maker)

        assert [(c.payout_id, c.old_status, c.new_status) for c in changes] == [
            (payout.id, PayoutStatus.PROCESSING, PayoutStatus.COMPLETED)
        ]
        assert (await load_payout(session_factory, payout.id)).status == PayoutStatus.COMPLETED
        assert len(notifier.events) == 1

        # completed payouts are no longer checked: no transition, no second event
        assert await payout_service.verify_payouts(stripe_maker) == []
        assert provider.lookups == ["po_1"]
        assert len(notifier.events) == 1

    async def test_verify_mid_simulation_changes_nothing(self, stripe_maker, db_session, session_factory):
        await add_earning(db_session, stripe_maker.id, "40.00", RETAINED)
        notifier = StepSignalNotifier("pending")
        executor = PayoutExecutor(
            session_factory, notifier, {PayoutMethod.STRIPE: simulated_stripe()}, step_delay=60
        )
        payout_service = service_with(db_session, executor, notifier)

        payout = await payout_service.request_payout(stripe_maker, "20.00")
        # the executor has recorded the provider reference and now waits for the next step
        await asyncio.wait_for(notifier.reached.wait(), timeout=5)

        try:
            assert await payout_service.verify_payouts(stripe_maker) == []
            current = await load_payout(session_factory, payout.id)
            assert current.status == PayoutStatus.PENDING
            assert current.provider_reference.startswith("py_test_")
            assert current.sent_at is None
            assert [e["status"] for _, e in notifier.of_type("payout_status_update")] == ["pending"]
        finally:
            for task in executor._tasks:
                task.cancel()
            await executor.drain()

    async def test_payouts_without_reference_are_skipped(self, payout_service, stripe_maker, db_session):
        await add_payout(db_session, stripe_maker.id, "20.00", PayoutStatus.PENDING)
        assert await payout_service.verify_payouts(stripe_maker) == []

    async def test_lookup_error_does_not_abort_others(self, session_factory, notifier, stripe_maker, db_session):
        broken = await add_payout(db_session, stripe_maker.id, "20.00", PayoutStatus.PENDING, reference="po_broken")
        fine = await add_payout(db_session, stripe_maker.id, "15.00", PayoutStatus.PENDING, reference="po_fine")
        provider = FlakyProvider("po_broken", PayoutStatus.FAILED)
        executor = PayoutExecutor(session_factory, notifier, {PayoutMethod.STRIPE: provider}, step_delay=0)

        changes = await executor.reconcile(stripe_maker.id)

        assert sorted(provider.lookups) == ["po_broken", "po_fine"]
        assert [c.payout_id for c in changes] == [fine.id]
        assert (await load_payout(session_factory, broken.id)).status == PayoutStatus.PENDING
        assert (await load_payout(session_factory, fine.id)).status == PayoutStatus.FAILED
