"""Database models."""
from voxelhub.infra.db.models.user import UserModel
from voxelhub.infra.db.models.bidding import ProjectModel, BidModel, ReviewModel
from voxelhub.infra.db.models.settlement import MakerProfileModel, EarningModel, PayoutModel

__all__ = [
    "UserModel",
    "ProjectModel",
    "BidModel",
    "ReviewModel",
    "MakerProfileModel",
    "EarningModel",
    "PayoutModel",
]
