from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from scholarfeed.models.enums import ChangeKind, StreamEventType
from scholarfeed.models.listing import Listing

_STREAM_TYPE_BY_KIND: dict[ChangeKind, StreamEventType] = {
    ChangeKind.NEW: StreamEventType.NEW_SCHOLARSHIP,
    ChangeKind.UPDATED: StreamEventType.SCHOLARSHIP_UPDATE,
    ChangeKind.DEADLINE_APPROACHING: StreamEventType.DEADLINE_ALERT,
    ChangeKind.EXPIRED: StreamEventType.SCHOLARSHIP_UPDATE,
}


class StreamEvent(BaseModel):
    """Wire form of everything pushed to a subscriber."""

    model_config = ConfigDict(frozen=True)

    type: StreamEventType
    listing: Listing | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def connected(cls) -> StreamEvent:
        return cls(
            type=StreamEventType.SYSTEM_STATUS,
            data={"status": "connected", "message": "Real-time scholarship updates enabled"},
        )

    @classmethod
    def status(cls, status: str, **extra: Any) -> StreamEvent:
        return cls(type=StreamEventType.SYSTEM_STATUS, data={"status": status, **extra})

    def to_wire(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", by_alias=True)
        if payload.get("listing") is None:
            payload.pop("listing", None)
        return payload


class ChangeEvent(BaseModel):
    """A classified difference between two consecutive snapshots."""

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    listing: Listing
    detected_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    days_left: int | None = None
    message: str = ""

    def to_stream_event(self) -> StreamEvent:
        data: dict[str, Any] = {"kind": self.kind.value}
        if self.days_left is not None:
            data["daysLeft"] = self.days_left
        if self.message:
            data["message"] = self.message
        return StreamEvent(
            type=_STREAM_TYPE_BY_KIND[self.kind],
            listing=self.listing,
            data=data,
            timestamp=self.detected_at,
        )
