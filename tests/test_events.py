"""Tests for webhook call event parsing."""

from wa_call_bridge.events import CallEventType, parse_call_event


def make_payload(call=None, contacts=None):
    value = {}
    if call is not None:
        value["calls"] = [call]
    if contacts is not None:
        value["contacts"] = contacts
    return {"object": "whatsapp_business_account", "entry": [{"changes": [{"value": value}]}]}


class TestParseCallEvent:
    def test_connect_with_contact(self):
        payload = make_payload(
            {"id": "wacid.1", "event": "connect", "session": {"sdp_type": "offer", "sdp": "v=0"}},
            [{"profile": {"name": "Ada"}, "wa_id": "15550001111"}],
        )
        event = parse_call_event(payload)
        assert event.call_id == "wacid.1"
        assert event.event_type is CallEventType.CONNECT
        assert event.sdp == "v=0"
        assert event.caller_name == "Ada"
        assert event.caller_number == "15550001111"

    def test_missing_contact_defaults_to_unknown(self):
        event = parse_call_event(make_payload({"id": "wacid.1", "event": "connect"}))
        assert event.caller_name == "Unknown"
        assert event.caller_number == "Unknown"
        assert event.sdp is None

    def test_terminate_with_duration(self):
        event = parse_call_event(make_payload(
            {"id": "wacid.1", "event": "terminate", "duration": 42, "status": "COMPLETED"},
        ))
        assert event.event_type is CallEventType.TERMINATE
        assert event.duration == 42
        assert event.status == "COMPLETED"

    def test_unrecognized_event_is_kept(self):
        event = parse_call_event(make_payload({"id": "wacid.1", "event": "ringing"}))
        assert event.event == "ringing"
        assert event.event_type is None

    def test_missing_id_or_event(self):
        assert parse_call_event(make_payload({"event": "connect"})) is None
        assert parse_call_event(make_payload({"id": "wacid.1"})) is None

    def test_non_call_payloads(self):
        assert parse_call_event(make_payload()) is None
        assert parse_call_event({"entry": []}) is None
        assert parse_call_event({"entry": [{"changes": [{"value": "x"}]}]}) is None
        assert parse_call_event(["not", "a", "dict"]) is None
        assert parse_call_event(None) is None
