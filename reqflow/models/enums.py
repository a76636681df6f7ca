from __future__ import annotations

import enum


class Role(str, enum.Enum):
    REQUESTER = "REQUESTER"
    GROUP_LEAD = "GROUP_LEAD"
    DEPUTY = "DEPUTY"
    NETWORK_HEAD = "NETWORK_HEAD"
    NETWORK_ADMIN = "NETWORK_ADMIN"


class RequestType(str, enum.Enum):
    FILE_TRANSFER = "FILE_TRANSFER"
    BACKUP = "BACKUP"
    VDI = "VDI"


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    # Only ever recorded on history entries; a request row never rests here.
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class BackupSchedule(str, enum.Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class VdiAccessLevel(str, enum.Enum):
    STANDARD = "STANDARD"
    POWER = "POWER"
    ADMIN = "ADMIN"
