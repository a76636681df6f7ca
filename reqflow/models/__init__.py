"""Import all models so SQLAlchemy metadata is fully registered."""

from reqflow.db.base import Base

from reqflow.models.enums import BackupSchedule, RequestStatus, RequestType, Role, VdiAccessLevel
from reqflow.models.request import ServiceRequest
from reqflow.models.revoked_token import RevokedToken
from reqflow.models.sequence import RequestSequence
from reqflow.models.user import ADMIN_GROUP_ID, User

__all__ = [
    "Base",
    "ADMIN_GROUP_ID",
    "BackupSchedule",
    "RequestSequence",
    "RequestStatus",
    "RequestType",
    "RevokedToken",
    "Role",
    "ServiceRequest",
    "User",
    "VdiAccessLevel",
]
