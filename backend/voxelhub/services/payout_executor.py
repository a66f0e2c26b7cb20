"""
Background payout execution and provider reconciliation.

A payout request returns as soon as the pending payout is committed. The
executor then submits it to the provider for its method and applies the
provider's follow-up steps one by one. Every step runs in its own session and
writes with a compare-and-set on the status it expects, so a step whose payout
was deleted, already failed, or was settled by reconciliation does nothing and
stops the chain. Each applied change is pushed to the maker after commit.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from voxelhub.domain.common.types import utcnow
from voxelhub.domain.realtime.events import Notifier, payout_status_event
from voxelhub.domain.settlement.models import PayoutDestination, PayoutMethod, PayoutStatus, StatusChange
from voxelhub.domain.settlement.state_machine import can_transition
from voxelhub.infra.db.repositories.settlement_repo import (
    MakerProfileRepositoryImpl,
    PayoutRepositoryImpl,
)
from voxelhub.infra.payments.base import PayoutProvider

logger = logging.getLogger(__name__)


class PayoutExecutor:
    """Drives payouts through their provider. Implements the PayoutRunner protocol."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        notifier: Notifier,
        providers: dict[PayoutMethod, PayoutProvider],
        step_delay: float = 3.0,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.providers = providers
        self.step_delay = step_delay
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, payout_id: str) -> None:
        """Run execute() in the background; the caller does not wait for it."""
        task = asyncio.create_task(self.execute(payout_id), name=f"payout-{payout_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled payout task (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def execute(self, payout_id: str) -> None:
        """Submit a pending payout and walk it through the provider's steps."""
        async with self.session_factory() as db:
            payout = await PayoutRepositoryImpl(db).get(payout_id)
            if payout is None or payout.status != PayoutStatus.PENDING:
                logger.info("Payout %s is no longer pending, nothing to execute", payout_id)
                return
            provider = self.providers.get(payout.method)
            if provider is None:
                logger.info("Payout %s (%s) awaits manual processing", payout.id, payout.method.value)
                return
            profile = await MakerProfileRepositoryImpl(db).get(payout.maker_id)

        destination = profile.payout_destination if profile else None
        if destination is None or destination.method != payout.method:
            await self._fail(payout.id, payout.maker_id, "Payout destination is no longer configured")
            return

        try:
            logger.info("Submitting payout %s to %s: %s %s", payout.id, provider.name, payout.amount, payout.currency)
            result = await provider.submit(payout, destination)
        except Exception as e:
            logger.error("Payout %s submission to %s failed: %s", payout.id, provider.name, e, exc_info=True)
            await self._fail(payout.id, payout.maker_id, str(e))
            return

        current = PayoutStatus.PENDING
        try:
            if result.status == PayoutStatus.PENDING:
                applied = await self._advance(
                    payout.id, payout.maker_id, current, current,
                    provider_reference=result.reference,
                )
            else:
                applied = await self._advance(
                    payout.id, payout.maker_id, current, result.status,
                    provider_reference=result.reference,
                    failure_reason=result.error,
                )
                if applied:
                    current = result.status
            if not applied:
                return

            for next_status in result.follow_up:
                await asyncio.sleep(self.step_delay)
                if not await self._advance(payout.id, payout.maker_id, current, next_status):
                    logger.info("Payout %s moved on without us, stopping at %s", payout.id, current.value)
                    return
                current = next_status
        except Exception as e:
            logger.error("Payout %s step after %s failed: %s", payout.id, current.value, e, exc_info=True)
            await self._fail(payout.id, payout.maker_id, str(e), expected=current)

    async def _advance(
        self,
        payout_id: str,
        maker_id: str,
        expected: PayoutStatus,
        new: PayoutStatus,
        provider_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
        sent_at: Optional[datetime] = None,
    ) -> bool:
        """Apply one status step if the payout is still in `expected`.

        expected == new only records the provider reference on a pending payout.
        The step is committed before the maker is told; a failed push does not
        undo it.
        """
        if expected != new and not can_transition(expected, new):
            logger.warning("Ignoring illegal payout step %s: %s -> %s", payout_id, expected.value, new.value)
            return False
        if sent_at is None and new in (PayoutStatus.PROCESSING, PayoutStatus.COMPLETED):
            sent_at = utcnow()
        async with self.session_factory() as db:
            changed = await PayoutRepositoryImpl(db).transition(
                payout_id,
                expected=expected,
                new=new,
                provider_reference=provider_reference,
                failure_reason=failure_reason,
                sent_at=sent_at,
            )
            await db.commit()
        if not changed:
            return False
        logger.info("Payout %s: %s -> %s", payout_id, expected.value, new.value)
        try:
            await self.notifier.notify(maker_id, payout_status_event(payout_id, new.value))
        except Exception as e:
            logger.warning("Could not push payout %s status %s to maker %s: %s", payout_id, new.value, maker_id, e)
        return True

    async def _fail(
        self,
        payout_id: str,
        maker_id: str,
        reason: str,
        expected: PayoutStatus = PayoutStatus.PENDING,
    ) -> None:
        try:
            await self._advance(payout_id, maker_id, expected, PayoutStatus.FAILED, failure_reason=reason[:500])
        except Exception:
            logger.exception("Could not mark payout %s as failed", payout_id)

    async def reconcile(self, maker_id: Optional[str] = None) -> list[StatusChange]:
        """Re-query providers for pending/processing payouts that have a provider reference.

        No session is held while a provider is queried. Each change is then
        written in its own short session with the same status guard the
        execution steps use, so a payout that moved on meanwhile is left alone.
        A lookup error for one payout is logged and the others are still checked.
        """
        async with self.session_factory() as db:
            payouts = await PayoutRepositoryImpl(db).list_unsettled(maker_id)
            profiles = MakerProfileRepositoryImpl(db)
            destinations: dict[str, Optional[PayoutDestination]] = {}
            for payout in payouts:
                if payout.maker_id not in destinations:
                    profile = await profiles.get(payout.maker_id)
                    destinations[payout.maker_id] = profile.payout_destination if profile else None

        changes: list[StatusChange] = []
        for payout in payouts:
            provider = self.providers.get(payout.method)
            if provider is None or not payout.provider_reference:
                continue
            try:
                status = await provider.fetch_status(payout.provider_reference, destinations[payout.maker_id])
            except Exception as e:
                logger.error("Status lookup for payout %s (%s) failed: %s", payout.id, payout.provider_reference, e)
                continue
            logger.info("[Payout Verification] %s: provider status = %s", payout.id, status and status.value)
            if status is None or status == payout.status or not can_transition(payout.status, status):
                continue
            if await self._advance(payout.id, payout.maker_id, payout.status, status, sent_at=payout.sent_at):
                logger.info("[Payout Update] %s: %s -> %s", payout.id, payout.status.value, status.value)
                changes.append(StatusChange(payout.id, payout.status, status))
        return changes
