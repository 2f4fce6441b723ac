"""Event models flowing through the correlation and delivery engine.

``ActionEvent`` and ``NetworkSignal`` are the two inputs of the correlation
engine; ``TelemetryEvent`` is what leaves it and travels through the
delivery pipeline.  All models are frozen: once created (or handed off to
the pipeline) an event never changes.  Wire serialisation uses camelCase
aliases so batches match the ingestion backend contract.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Longest text snippet kept from an interaction target.
_MAX_TEXT_SNIPPET = 100


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class ActionKind(str, Enum):
    """Kinds of user-initiated actions the engine correlates."""

    CLICK = "click"
    FORM_SUBMIT = "form_submit"
    CUSTOM = "custom"


class NetworkOutcome(str, Enum):
    """How an observed outbound call settled.

    The outcome is informational only: any outcome counts as proof that
    the application attempted a network follow-up.
    """

    SUCCESS = "success"
    HTTP_ERROR = "http_error"
    TRANSPORT_ERROR = "transport_error"


class TelemetryEventType(str, Enum):
    """Types of telemetry events shipped to the ingestion backend."""

    SILENT_FAILURE = "silent_failure"
    HEARTBEAT = "heartbeat"
    CONSOLE_ERROR = "console_error"
    UNHANDLED_REJECTION = "unhandled_rejection"
    MISSING_DOM_ELEMENT = "missing_dom_element"
    CUSTOM = "custom"


class TargetDescriptor(BaseModel):
    """Description of the element a user interacted with."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tag: str = Field(..., min_length=1, description="Element tag name, upper-cased (e.g. 'BUTTON').")
    id: str | None = Field(default=None, description="Element id attribute.")
    class_name: str | None = Field(default=None, alias="class", description="Element class attribute.")
    text: str | None = Field(default=None, description="Leading snippet of the element's visible text.")
    input_type: str | None = Field(default=None, alias="inputType", description="``type`` of INPUT elements.")
    role: str | None = Field(default=None, description="ARIA role, when present.")
    disabled: bool = Field(default=False, description="Whether the element was disabled at interaction time.")

    @field_validator("tag")
    @classmethod
    def _upper_tag(cls, v: str) -> str:
        return v.upper()

    @field_validator("text")
    @classmethod
    def _trim_text(cls, v: str | None) -> str | None:
        if v is None:
            return None
        snippet = " ".join(v.split())
        return snippet[:_MAX_TEXT_SNIPPET]

    def summary(self) -> dict[str, Any]:
        """Return the descriptor fields carried in silent-failure telemetry."""
        return {
            "tag": self.tag,
            "id": self.id,
            "class": self.class_name,
            "text": self.text,
        }


class ActionEvent(BaseModel):
    """A user-initiated action awaiting network follow-up."""

    model_config = ConfigDict(frozen=True)

    kind: ActionKind
    target: TargetDescriptor
    occurred_at: datetime = Field(default_factory=_utcnow)


class NetworkSignal(BaseModel):
    """One settled outbound network call observed by the activity monitor."""

    model_config = ConfigDict(frozen=True)

    url: str
    outcome: NetworkOutcome
    status_code: int | None = None
    observed_at: datetime = Field(default_factory=_utcnow)


class TelemetryEvent(BaseModel):
    """A telemetry record handed to the delivery pipeline.

    Attributes
    ----------
    event_id:
        Unique identifier, useful for spotting replayed duplicates
        server-side.
    type:
        The telemetry event type (verdict or instrumentation hook).
    session_id:
        The persisted session identifier of the emitting process.
    page:
        Logical page or screen the event belongs to.
    timestamp:
        When the event was produced (UTC).
    payload:
        Arbitrary structured detail.
    silent_failure:
        ``True`` only for silent-failure verdicts.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_id: str = Field(default_factory=lambda: f"evt-{uuid.uuid4().hex[:12]}", alias="eventId")
    type: TelemetryEventType
    session_id: str = Field(..., alias="sessionId")
    page: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)
    silent_failure: bool = Field(default=False, alias="silentFailure")

    def to_wire(self) -> dict[str, Any]:
        """Serialise with camelCase keys and JSON-safe values."""
        return self.model_dump(mode="json", by_alias=True)


class TelemetryBatch(BaseModel):
    """Envelope POSTed to the ingestion backend.

    Direct sends and queue replays share this envelope so the backend
    cannot tell them apart.
    """

    events: list[TelemetryEvent]
    page: str = ""
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_wire(self) -> dict[str, Any]:
        return {
            "events": [event.to_wire() for event in self.events],
            "page": self.page,
            "timestamp": self.timestamp.isoformat(),
        }


class QueuedEvent(BaseModel):
    """A telemetry event persisted in the durable queue under a local key."""

    model_config = ConfigDict(frozen=True)

    key: int
    event: TelemetryEvent
