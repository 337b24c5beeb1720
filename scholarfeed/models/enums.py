from __future__ import annotations

from enum import StrEnum


class Priority(StrEnum):
    __slots__ = ()

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort weight; higher is more urgent."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


class SourceKind(StrEnum):
    """Adapter family that produced a listing, in ascending trust order."""

    __slots__ = ()

    PRIVATE = "private"
    STATE = "state"
    AICTE = "aicte"
    NSP = "nsp"

    @property
    def trust(self) -> int:
        return _SOURCE_TRUST[self]


_SOURCE_TRUST = {
    SourceKind.PRIVATE: 0,
    SourceKind.STATE: 1,
    SourceKind.AICTE: 2,
    SourceKind.NSP: 3,
}


class SourceMode(StrEnum):
    __slots__ = ()

    LIVE = "live"
    PLACEHOLDER = "placeholder"
    DISABLED = "disabled"


class ChangeKind(StrEnum):
    __slots__ = ()

    NEW = "new"
    UPDATED = "updated"
    DEADLINE_APPROACHING = "deadline_approaching"
    EXPIRED = "expired"


class StreamEventType(StrEnum):
    __slots__ = ()

    NEW_SCHOLARSHIP = "new_scholarship"
    SCHOLARSHIP_UPDATE = "scholarship_update"
    DEADLINE_ALERT = "deadline_alert"
    SYSTEM_STATUS = "system_status"
