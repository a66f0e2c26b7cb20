"""Project and bid status transitions."""
from voxelhub.domain.bidding.models import BidStatus, ProjectStatus


class InvalidTransition(Exception):
    pass


PROJECT_TRANSITIONS = {
    ProjectStatus.ACTIVE: {ProjectStatus.RESERVED, ProjectStatus.COMPLETED},
    ProjectStatus.RESERVED: {ProjectStatus.COMPLETED},
    ProjectStatus.COMPLETED: set(),
}

BID_TRANSITIONS = {
    BidStatus.PENDING: {BidStatus.ACCEPTED, BidStatus.REJECTED},
    BidStatus.ACCEPTED: set(),
    BidStatus.REJECTED: set(),
}


def assert_project_transition(old: ProjectStatus, new: ProjectStatus) -> None:
    if new not in PROJECT_TRANSITIONS.get(old, set()):
        raise InvalidTransition(f"Illegal project transition: {old.value} -> {new.value}")


def assert_bid_transition(old: BidStatus, new: BidStatus) -> None:
    if new not in BID_TRANSITIONS.get(old, set()):
        raise InvalidTransition(f"Illegal bid transition: {old.value} -> {new.value}")
