"""Per-user WebSocket notifier."""
import pytest
from starlette.websockets import WebSocketDisconnect, WebSocketState

from voxelhub.domain.realtime.events import EventType, bid_event, payout_status_event
from voxelhub.infra.realtime.notifier import RealtimeNotifier

from tests.conftest import FakeWebSocket


async def test_notify_registered_user():
    notifier = RealtimeNotifier()
    ws = FakeWebSocket()
    notifier.register("u1", ws)

    assert await notifier.notify("u1", bid_event(EventType.NEW_BID, "p1", "b1"))
    assert ws.sent == [{"type": "new_bid", "projectId": "p1", "bidId": "b1"}]
    assert notifier.is_connected("u1")


async def test_unknown_user_is_dropped():
    assert not await RealtimeNotifier().notify("nobody", payout_status_event("po", "completed"))


async def test_last_registration_wins():
    notifier = RealtimeNotifier()
    old, new = FakeWebSocket(), FakeWebSocket()
    notifier.register("u1", old)
    notifier.register("u1", new)

    await notifier.notify("u1", payout_status_event("po", "processing"))

    assert old.sent == []
    assert new.sent == [{"type": "payout_status_update", "payoutId": "po", "status": "processing"}]


async def test_stale_socket_cannot_unregister_newer_one():
    notifier = RealtimeNotifier()
    old, new = FakeWebSocket(), FakeWebSocket()
    notifier.register("u1", old)
    notifier.register("u1", new)

    notifier.unregister("u1", old)
    assert notifier.connections["u1"] is new

    notifier.unregister("u1", new)
    assert "u1" not in notifier.connections


async def test_closed_socket_is_dropped_and_removed():
    notifier = RealtimeNotifier()
    ws = FakeWebSocket()
    ws.client_state = WebSocketState.DISCONNECTED
    notifier.register("u1", ws)

    assert not notifier.is_connected("u1")
    assert not await notifier.notify("u1", payout_status_event("po", "failed"))
    assert ws.sent == []
    assert "u1" not in notifier.connections


async def test_failed_send_is_not_raised():
    notifier = RealtimeNotifier()
    notifier.register("u1", FakeWebSocket(fail_with=RuntimeError("socket closed")))

    assert not await notifier.notify("u1", payout_status_event("po", "failed"))
    assert "u1" not in notifier.connections


@pytest.mark.parametrize(
    "error",
    [WebSocketDisconnect(code=1006), OSError("connection reset"), ValueError("cannot encode")],
    ids=["abnormal-close", "os-error", "other"],
)
async def test_send_error_on_open_socket_is_dropped(error):
    """The peer can vanish before its close frame arrives; the socket still reads CONNECTED."""
    notifier = RealtimeNotifier()
    ws = FakeWebSocket(fail_with=error)
    notifier.register("u1", ws)
    assert notifier.is_connected("u1")

    assert not await notifier.notify("u1", payout_status_event("po", "processing"))
    assert "u1" not in notifier.connections

    # later events for the same user are dropped quietly too
    assert not await notifier.notify("u1", payout_status_event("po", "completed"))
