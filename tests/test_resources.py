"""Tests for the resource adapters and their degrade-to-empty policy."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from conftest import api_event
from google_calendar_mcp import (
    JSON_MIME_TYPE,
    TODAY_CALENDAR_URI,
    WEEKLY_CALENDAR_URI,
    AuthenticationError,
    CalendarEvent,
    CalendarGateway,
    CalendarResource,
    CredentialParseError,
    CredentialReadError,
    CustomerDirectory,
    EventFetchError,
    HelloWorldResource,
    ResourceEnvelope,
    today_calendar_resource,
    weekly_calendar_resource,
)


def _body(envelopes):
    assert len(envelopes) == 1
    envelope = envelopes[0]
    assert isinstance(envelope, ResourceEnvelope)
    return json.loads(envelope.text)


def _event(event_id: str) -> CalendarEvent:
    return CalendarEvent(
        id=event_id,
        start="2026-10-19T09:00:00Z",
        end="2026-10-19T10:00:00Z",
        status="confirmed",
    )


class TestCalendarResource:
    async def test_success_envelope(self):
        resource = CalendarResource(
            "resource://test", "Test", "Test resource", AsyncMock(return_value=[_event("a"), _event("b")]), "boom"
        )

        envelopes = await resource.read()
        body = _body(envelopes)

        assert envelopes[0].uri == "resource://test"
        assert envelopes[0].mime_type == JSON_MIME_TYPE
        assert [e["id"] for e in body["events"]] == ["a", "b"]
        assert body["count"] == 2
        assert "error" not in body

    async def test_timestamp_is_envelope_construction_time(self):
        resource = CalendarResource(
            "resource://test", "Test", "Test resource", AsyncMock(return_value=[_event("a")]), "boom"
        )

        before = datetime.now(timezone.utc)
        body = _body(await resource.read())
        after = datetime.now(timezone.utc)

        stamp = datetime.fromisoformat(body["timestamp"])
        assert before - timedelta(seconds=1) <= stamp <= after + timedelta(seconds=1)

    @pytest.mark.parametrize(
        "error",
        [
            CredentialReadError("missing"),
            CredentialParseError("bad"),
            AuthenticationError("rejected"),
            EventFetchError("network down"),
        ],
    )
    async def test_every_error_kind_degrades_to_empty(self, error):
        resource = CalendarResource(
            "resource://test", "Test", "Test resource", AsyncMock(side_effect=error), "Could not load"
        )

        body = _body(await resource.read())

        assert body["events"] == []
        assert body["count"] == 0
        assert body["error"] == "Could not load"
        assert "timestamp" in body

    async def test_envelope_serializes_with_camel_case(self):
        resource = CalendarResource(
            "resource://test", "Test", "Test resource", AsyncMock(return_value=[]), "boom"
        )

        envelope = (await resource.read())[0]

        assert envelope.model_dump(by_alias=True)["mimeType"] == JSON_MIME_TYPE


class TestHelloWorldResource:
    async def test_returns_customers(self):
        envelopes = await HelloWorldResource(CustomerDirectory()).read()

        assert envelopes[0].uri == "resource://hello-world"
        assert _body(envelopes) == {"customers": [{"id": 1, "name": "John Doe"}]}

    async def test_uses_given_directory(self):
        directory = CustomerDirectory([{"id": 7, "name": "Ada"}])

        assert _body(await HelloWorldResource(directory).read()) == {"customers": [{"id": 7, "name": "Ada"}]}


class TestCalendarScenarios:
    async def test_today_resource_returns_two_upstream_events(self, gateway, google_api):
        google_api.list_request.execute.return_value = {
            "items": [
                api_event("first", "2026-10-19T09:00:00+02:00", "2026-10-19T10:00:00+02:00"),
                api_event("second", "2026-10-19", "2026-10-20", all_day=True),
            ]
        }

        envelopes = await today_calendar_resource(gateway).read()
        body = _body(envelopes)

        assert envelopes[0].uri == TODAY_CALENDAR_URI
        assert [e["id"] for e in body["events"]] == ["first", "second"]
        assert body["count"] == 2
        assert body["events"][1]["start"] == "2026-10-19"
        assert body["events"][1]["allDay"] is True

    async def test_network_error_degrades_without_raising(self, gateway, google_api):
        google_api.list_request.execute.side_effect = ConnectionResetError("Connection reset by peer")

        envelopes = await today_calendar_resource(gateway).read()
        body = _body(envelopes)

        assert envelopes[0].uri == TODAY_CALENDAR_URI
        assert envelopes[0].mime_type == JSON_MIME_TYPE
        assert body["events"] == []
        assert body["count"] == 0
        assert body["error"] == "Failed to fetch calendar events"

    async def test_non_json_body_degrades_without_raising(self, gateway, google_api):
        google_api.list_request.execute.return_value = "<html>proxy login</html>"

        body = _body(await today_calendar_resource(gateway).read())

        assert body["events"] == []
        assert body["count"] == 0
        assert body["error"] == "Failed to fetch calendar events"

    async def test_weekly_resource_has_its_own_error_message(self, gateway, google_api):
        google_api.list_request.execute.side_effect = ConnectionResetError("Connection reset by peer")

        body = _body(await weekly_calendar_resource(gateway).read())

        assert body["error"] == "Failed to fetch calendar events for the next 7 days"

    async def test_missing_credential_file_degrades_without_raising(self, tmp_path, google_api):
        gateway = CalendarGateway(credentials_file=tmp_path / "missing.json")

        envelopes = await weekly_calendar_resource(gateway).read()
        body = _body(envelopes)

        assert envelopes[0].uri == WEEKLY_CALENDAR_URI
        assert body["events"] == []
        assert body["count"] == 0
        assert body["error"]

        with pytest.raises(CredentialReadError):
            await gateway.get_today_events()
