"""Realtime event payloads and the notifier protocol.

Events are best-effort pushes. Every state change they announce is also
readable through the REST API, so a dropped event only delays what the client
sees until its next refetch.
"""
from enum import Enum
from typing import Any, Protocol


class EventType(str, Enum):
    NEW_BID = "new_bid"
    BID_ACCEPTED = "bid_accepted"
    BID_REJECTED = "bid_rejected"
    BID_DELETED = "bid_deleted"
    NEW_MESSAGE = "new_message"
    DELIVERY_CONFIRMED = "delivery_confirmed"
    PAYOUT_STATUS_UPDATE = "payout_status_update"


class Notifier(Protocol):
    """Pushes an event to whichever connection is registered for a user."""

    async def notify(self, user_id: str, event: dict[str, Any]) -> bool:
        """Send the event. Returns False when it was dropped."""
        ...


def bid_event(event_type: EventType, project_id: str, bid_id: str) -> dict[str, Any]:
    return {"type": event_type.value, "projectId": project_id, "bidId": bid_id}


def delivery_confirmed_event(
    project_id: str,
    bid_id: str,
    client_id: str,
    client_name: str,
    project_name: str,
) -> dict[str, Any]:
    return {
        "type": EventType.DELIVERY_CONFIRMED.value,
        "projectId": project_id,
        "bidId": bid_id,
        "clientId": client_id,
        "clientName": client_name,
        "projectName": project_name,
    }


def payout_status_event(payout_id: str, status: str) -> dict[str, Any]:
    return {
        "type": EventType.PAYOUT_STATUS_UPDATE.value,
        "payoutId": payout_id,
        "status": status,
    }
