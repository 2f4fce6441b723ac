"""Tests for event models and their wire format."""

from __future__ import annotations

from conftest import button, make_event

from silentwatch.models.events import TargetDescriptor, TelemetryBatch, TelemetryEvent, TelemetryEventType


class TestTargetDescriptor:
    def test_tag_upper_cased(self) -> None:
        assert TargetDescriptor(tag="button").tag == "BUTTON"

    def test_text_collapsed_and_truncated(self) -> None:
        target = TargetDescriptor(tag="a", text="  Go\n  to   " + "x" * 200)
        assert target.text.startswith("Go to x")
        assert len(target.text) == 100

    def test_aliases_accepted(self) -> None:
        target = TargetDescriptor.model_validate({"tag": "input", "class": "cta", "inputType": "submit"})
        assert target.class_name == "cta"
        assert target.input_type == "submit"

    def test_summary(self) -> None:
        assert button().summary() == {"tag": "BUTTON", "id": "pay", "class": "btn primary", "text": "Pay now"}


class TestTelemetryEvent:
    def test_event_ids_unique(self) -> None:
        assert make_event().event_id != make_event().event_id

    def test_wire_uses_camel_case(self) -> None:
        wire = make_event(TelemetryEventType.SILENT_FAILURE, {"tag": "BUTTON"}, silent_failure=True).to_wire()
        assert wire["type"] == "silent_failure"
        assert wire["sessionId"] == "session-test"
        assert wire["silentFailure"] is True
        assert wire["eventId"].startswith("evt-")
        assert isinstance(wire["timestamp"], str)

    def test_wire_form_validates_back(self) -> None:
        event = make_event(payload={"n": 1})
        assert TelemetryEvent.model_validate(event.to_wire()).model_dump() == event.model_dump()


class TestTelemetryBatch:
    def test_envelope(self) -> None:
        events = [make_event(), make_event()]
        wire = TelemetryBatch(events=events, page="/checkout").to_wire()
        assert set(wire) == {"events", "page", "timestamp"}
        assert [e["eventId"] for e in wire["events"]] == [e.event_id for e in events]
        assert wire["page"] == "/checkout"
