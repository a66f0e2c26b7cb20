"""Script to record a manually executed bank transfer for a pending bank payout."""
import asyncio
import sys
from pathlib import Path

# Add parent directory to path to import voxelhub modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from voxelhub.domain.common.errors import DomainError
from voxelhub.domain.settlement.services import PayoutService
from voxelhub.infra.db.base import AsyncSessionLocal
from voxelhub.infra.db.repositories.settlement_repo import (
    EarningRepositoryImpl,
    MakerProfileRepositoryImpl,
    PayoutRepositoryImpl,
)
from voxelhub.infra.payments import build_providers
from voxelhub.infra.realtime.notifier import RealtimeNotifier
from voxelhub.services.payout_executor import PayoutExecutor
from voxelhub.settings import settings


async def record_transfer(payout_id: str, reference: str, status: str) -> bool:
    notifier = RealtimeNotifier()
    async with AsyncSessionLocal() as session:
        service = PayoutService(
            session,
            MakerProfileRepositoryImpl(session),
            EarningRepositoryImpl(session),
            PayoutRepositoryImpl(session),
            PayoutExecutor(AsyncSessionLocal, notifier, build_providers(settings)),
            notifier,
            currency=settings.payout_currency,
        )
        try:
            payout = await service.record_bank_transfer(payout_id, reference, status)
        except DomainError as e:
            print(f"❌ {e}")
            return False
    print(f"✅ Payout {payout.id} is now {payout.status.value} (ref {payout.provider_reference})")
    return True


def main():
    if len(sys.argv) < 3:
        print(
            "Usage: python scripts/record_bank_transfer.py <payout_id> <transfer_reference> [completed|processing|failed]",
            file=sys.stderr,
        )
        raise SystemExit(2)
    status = sys.argv[3] if len(sys.argv) > 3 else "completed"
    try:
        ok = asyncio.run(record_transfer(sys.argv[1], sys.argv[2], status))
    except OSError as e:
        if "Connect call failed" in str(e) or "Connection refused" in str(e):
            print("Database connection failed: PostgreSQL is not reachable.", file=sys.stderr)
            print("  Set DATABASE_URL to your database (e.g. export DATABASE_URL='postgresql://...').", file=sys.stderr)
            raise SystemExit(1) from e
        raise
    raise SystemExit(0 if ok else 1)


if __name__ == "__main__":
    main()
