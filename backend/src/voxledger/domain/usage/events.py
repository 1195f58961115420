"""Inbound usage events, as posted by the webhook collaborator.

Payloads arrive after signature verification in the voice platform's
camelCase shape; field aliases keep that wire format while the Python side
uses snake_case.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from voxledger.infrastructure.database.models.usage import UsageChannel
from voxledger.shared.periods import as_utc

# Longest call or workflow run accepted from the platform
MAX_DURATION_SECONDS = 7 * 24 * 60 * 60


class EventType(str, Enum):
    CALL_STARTED = "CallStarted"
    CALL_ENDED = "CallEnded"
    WORKFLOW_EXECUTED = "WorkflowExecuted"


class EventMetadata(BaseModel):
    """Free-form metadata; unknown keys are kept and copied to the ledger."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    user_id: str | None = Field(default=None, alias="userId")
    channel: UsageChannel | None = None

    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class UsageEvent(BaseModel):
    """One call or workflow lifecycle event."""

    model_config = ConfigDict(populate_by_name=True)

    type: EventType
    id: str = Field(..., min_length=1, max_length=255)
    assistant_id: str | None = Field(default=None, alias="assistantId", max_length=255)
    duration_seconds: float | None = Field(
        default=None,
        alias="durationSeconds",
        ge=0,
        le=MAX_DURATION_SECONDS,
        allow_inf_nan=False,
    )
    cost: Decimal | None = Field(default=None, ge=0, allow_inf_nan=False)
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    started_at: datetime | None = Field(default=None, alias="startedAt")
    ended_at: datetime | None = Field(default=None, alias="endedAt")
    ended_reason: str | None = Field(default=None, alias="endedReason")

    @field_validator("metadata", mode="before")
    @classmethod
    def null_metadata_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("started_at", "ended_at")
    @classmethod
    def within_calendar(cls, value: datetime | None) -> datetime | None:
        if value is not None and not 1970 <= value.year <= 9998:
            raise ValueError("timestamp outside the supported range")
        return value

    @model_validator(mode="after")
    def check_timing(self) -> "UsageEvent":
        if self.started_at is not None and self.ended_at is not None:
            span = as_utc(self.ended_at) - as_utc(self.started_at)
            if span < timedelta(0):
                raise ValueError("endedAt must not be before startedAt")
            if self.duration_seconds is None and span.total_seconds() > MAX_DURATION_SECONDS:
                raise ValueError("call spans longer than the maximum duration")
        return self

    @property
    def is_billable(self) -> bool:
        return self.type in (EventType.CALL_ENDED, EventType.WORKFLOW_EXECUTED)

    @property
    def channel(self) -> UsageChannel:
        if self.type == EventType.WORKFLOW_EXECUTED:
            return UsageChannel.WORKFLOW
        return self.metadata.channel or UsageChannel.ASSISTANT

    def with_timing(self, received_at: datetime) -> "UsageEvent":
        """Fill in start, end and duration so the event no longer depends on
        when it is processed.

        - end defaults to the receipt time
        - duration defaults to end - start when both are known, else 0
        - start defaults to end - duration
        """
        ended_at = as_utc(self.ended_at) if self.ended_at else None
        started_at = as_utc(self.started_at) if self.started_at else None
        seconds = self.duration_seconds

        if seconds is None:
            if started_at is not None and ended_at is not None:
                seconds = (ended_at - started_at).total_seconds()
            else:
                seconds = 0.0
        if ended_at is None:
            if started_at is not None:
                ended_at = started_at + timedelta(seconds=seconds)
            else:
                ended_at = as_utc(received_at)
        if started_at is None:
            started_at = ended_at - timedelta(seconds=seconds)

        return self.model_copy(
            update={
                "started_at": started_at,
                "ended_at": ended_at,
                "duration_seconds": seconds,
            }
        )

    def to_payload(self) -> dict[str, Any]:
        """Wire-format dict, suitable for storing and re-validating later."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
