"""Script to re-check unsettled payouts with their providers (all makers, or one)."""
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path to import voxelhub modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from voxelhub.infra.db.base import AsyncSessionLocal
from voxelhub.infra.payments import build_providers
from voxelhub.infra.realtime.notifier import RealtimeNotifier
from voxelhub.services.payout_executor import PayoutExecutor
from voxelhub.settings import settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


async def reconcile(maker_id=None):
    # No sockets in this process: status events are dropped, makers see the change on their next fetch
    executor = PayoutExecutor(
        session_factory=AsyncSessionLocal,
        notifier=RealtimeNotifier(),
        providers=build_providers(settings),
    )
    changes = await executor.reconcile(maker_id)
    if not changes:
        print("No payout status changes.")
    for change in changes:
        print(f"   {change.payout_id}: {change.old_status.value} -> {change.new_status.value}")
    return changes


def main():
    maker_id = sys.argv[1] if len(sys.argv) > 1 else None
    print(f"Reconciling payouts for {'maker ' + maker_id if maker_id else 'all makers'}...\n")
    try:
        asyncio.run(reconcile(maker_id))
    except OSError as e:
        if "Connect call failed" in str(e) or "Connection refused" in str(e):
            print("Database connection failed: PostgreSQL is not reachable.", file=sys.stderr)
            print("  Set DATABASE_URL to your database (e.g. export DATABASE_URL='postgresql://...').", file=sys.stderr)
            raise SystemExit(1) from e
        raise


if __name__ == "__main__":
    main()
