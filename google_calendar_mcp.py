#!/usr/bin/env python3
"""
Google Calendar MCP Server

This MCP server exposes read-only resources backed by a single Google Calendar,
accessed through the Google Calendar v3 API with a service account.

Resources:
- resource://hello-world: Static customer list
- resource://today-calendar: Events scheduled for today
- resource://weekly-calendar: Events scheduled for the next 7 days

Authentication Requirements:
- A Google Cloud service account key file (JSON) with client_email and private_key
- The target calendar shared with the service account's email address

Setup:
1. Create a service account and download its JSON key
2. Share your calendar with the service account email ("See all event details")
3. Set environment variables (or put them in a .env file):
   - GOOGLE_SERVICE_ACCOUNT_FILE: Path to the key file (default: ./service-account.json)
   - GOOGLE_CALENDAR_ID: Calendar to read (default: primary)
4. Run: python google_calendar_mcp.py

Every resource read answers with a JSON envelope. Calendar failures never reach
the MCP host; they show up as an "error" field next to an empty event list.
"""

import os
import sys
import json
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Callable, Awaitable
from pathlib import Path
from functools import partial

import httplib2
import google_auth_httplib2
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiClientError, HttpError
from pydantic import BaseModel, Field, ConfigDict, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from mcp.server.fastmcp import FastMCP
from dotenv import load_dotenv

# Load environment variables from .env file (if it exists)
load_dotenv()

logger = logging.getLogger(__name__)

# Constants
SERVER_NAME = "google_calendar_mcp"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]
DEFAULT_CALENDAR_ID = "primary"
DEFAULT_CREDENTIALS_FILE = Path(__file__).resolve().parent / "service-account.json"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JSON_MIME_TYPE = "application/json"
WEEK_DAYS = 7

HELLO_WORLD_URI = "resource://hello-world"
TODAY_CALENDAR_URI = "resource://today-calendar"
WEEKLY_CALENDAR_URI = "resource://weekly-calendar"


# ============================================================================
# Errors
# ============================================================================


class CalendarAccessError(Exception):
    """Base class for every failure the calendar gateway can surface."""


class CredentialReadError(CalendarAccessError):
    """The service account file is missing or unreadable."""


class CredentialParseError(CalendarAccessError):
    """The service account file is not a usable credential record."""


class AuthenticationError(CalendarAccessError):
    """The credential was rejected, locally or by Google's token endpoint."""


class EventFetchError(CalendarAccessError):
    """The upstream list call failed (network, quota, authorization, bad data)."""


# ============================================================================
# Configuration
# ============================================================================


class Settings(BaseModel):
    """Runtime configuration read from the environment."""

    model_config = ConfigDict(str_strip_whitespace=True)

    calendar_id: str = Field(
        default=DEFAULT_CALENDAR_ID,
        description="Google Calendar ID to read events from",
        min_length=1,
    )
    credentials_file: Path = Field(
        default=DEFAULT_CREDENTIALS_FILE,
        description="Path to the service account JSON key file",
    )
    log_level: str = Field(default="INFO", description="Root logging level")


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """Build Settings from environment variables.

    Empty values fall back to the defaults, so GOOGLE_CALENDAR_ID="" still
    reads the primary calendar.
    """
    env = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    calendar_id = (env.get("GOOGLE_CALENDAR_ID") or "").strip()
    if calendar_id:
        values["calendar_id"] = calendar_id

    credentials_file = (env.get("GOOGLE_SERVICE_ACCOUNT_FILE") or "").strip()
    if credentials_file:
        values["credentials_file"] = Path(credentials_file).expanduser()

    log_level = (env.get("LOG_LEVEL") or "").strip()
    if log_level:
        values["log_level"] = log_level.upper()

    return Settings(**values)


# ============================================================================
# Pydantic Models
# ============================================================================


class CamelModel(BaseModel):
    """Base model that serializes field names in camelCase, like the Calendar API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attendee(CamelModel):
    email: str
    response_status: Optional[str] = None


class Organizer(CamelModel):
    email: str
    display_name: Optional[str] = None


class CalendarEvent(CamelModel):
    """A calendar event flattened from a Google Calendar API event resource.

    ``start`` and ``end`` are copied verbatim from upstream: an RFC 3339
    date-time for timed events, or a YYYY-MM-DD date for all-day events
    (``all_day`` is then True).
    """

    id: str
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: str
    end: str
    all_day: bool = False
    attendees: List[Attendee] = Field(default_factory=list)
    organizer: Optional[Organizer] = None
    status: str
    html_link: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "CalendarEvent":
        if self.all_day:
            start = datetime.strptime(self.start, "%Y-%m-%d")
            end = datetime.strptime(self.end, "%Y-%m-%d")
        else:
            start = datetime.fromisoformat(self.start)
            end = datetime.fromisoformat(self.end)
        if start > end:
            raise ValueError(f"event {self.id} ends before it starts")
        return self


class ResourceEnvelope(CamelModel):
    """A single resource content block handed back to the MCP host."""

    uri: str
    mime_type: str = JSON_MIME_TYPE
    text: str


class ServiceAccountKey(BaseModel):
    """The parts of a service account key file this server relies on."""

    model_config = ConfigDict(extra="allow", hide_input_in_errors=True)

    client_email: str = Field(..., min_length=1)
    private_key: str = Field(..., min_length=1, repr=False)
    token_uri: str = DEFAULT_TOKEN_URI


# ============================================================================
# Helper Functions
# ============================================================================


async def run_blocking(func, *args, **kwargs):
    """Run a blocking Google API call in a worker thread.

    googleapiclient and google-auth are synchronous; this keeps the MCP event
    loop free while a token exchange or list request is in flight.
    """
    if kwargs:
        return await asyncio.to_thread(partial(func, **kwargs), *args)
    return await asyncio.to_thread(func, *args)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_local_day(now: datetime) -> datetime:
    """Return midnight of ``now``'s day as an aware datetime.

    Naive values are interpreted in the system local timezone. The result
    always carries a fixed UTC offset (the one in force at midnight), so adding
    a timedelta to it moves by exact 24-hour days.
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if midnight.tzinfo is None:
        return midnight.astimezone()
    return midnight.astimezone(timezone(midnight.utcoffset()))


def day_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    """Half-open window [local midnight, local midnight + days * 24h)."""
    start = start_of_local_day(now)
    return start, start + timedelta(days=days)


def load_service_account(path: Path) -> ServiceAccountKey:
    """Read and validate a service account key file.

    Args:
        path: Location of the JSON key file

    Returns:
        ServiceAccountKey: The validated credential record

    Raises:
        CredentialReadError: If the file is missing or unreadable
        CredentialParseError: If the content is not JSON or lacks
            client_email / private_key
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise CredentialReadError(
            f"Could not read service account file {path}: {e.__class__.__name__}"
        ) from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CredentialParseError(
            f"Service account file {path} is not valid JSON (line {e.lineno}, column {e.colno})"
        ) from e

    if not isinstance(data, dict):
        raise CredentialParseError(f"Service account file {path} must contain a JSON object")

    try:
        key = ServiceAccountKey.model_validate(data)
    except ValidationError as e:
        # Only report field names; input values may include the private key.
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
        raise CredentialParseError(
            f"Service account file {path} has missing or invalid fields: {', '.join(fields)}"
        ) from None

    logger.info("Service account loaded: %s", key.client_email)
    return key


def _event_time(value: Optional[Dict[str, Any]], field: str) -> tuple[str, bool]:
    """Extract (value, is_all_day) from an API start/end sub-object."""
    if not value or not isinstance(value, dict):
        raise ValueError(f"missing '{field}'")
    if value.get("dateTime"):
        return value["dateTime"], False
    if value.get("date"):
        return value["date"], True
    raise ValueError(f"'{field}' has neither dateTime nor date")


def event_from_api(item: Dict[str, Any]) -> CalendarEvent:
    """Map a Google Calendar API event resource onto CalendarEvent.

    Absent optional fields are tolerated. Missing start/end, mixed
    date/dateTime bounds, or end before start raise ValueError.
    """
    start, start_all_day = _event_time(item.get("start"), "start")
    end, end_all_day = _event_time(item.get("end"), "end")
    if start_all_day != end_all_day:
        raise ValueError(f"event {item.get('id')} mixes all-day and timed bounds")

    organizer = item.get("organizer")
    return CalendarEvent(
        id=item.get("id"),
        summary=item.get("summary"),
        description=item.get("description"),
        location=item.get("location"),
        start=start,
        end=end,
        all_day=start_all_day,
        # The API only sends attendee/organizer emails "if available"
        attendees=[
            Attendee(email=a["email"], response_status=a.get("responseStatus"))
            for a in item.get("attendees") or []
            if a.get("email")
        ],
        organizer=(
            Organizer(email=organizer["email"], display_name=organizer.get("displayName"))
            if organizer and organizer.get("email")
            else None
        ),
        status=item.get("status"),
        html_link=item.get("htmlLink"),
    )


def events_payload(events: List[CalendarEvent], error: Optional[str] = None) -> str:
    """Serialize the calendar resource body: events, count, timestamp[, error]."""
    payload: Dict[str, Any] = {
        "events": [event.model_dump(mode="json", by_alias=True) for event in events],
        "count": len(events),
        "timestamp": utc_now().isoformat(),
    }
    if error is not None:
        payload["error"] = error
    return json.dumps(payload)


# ============================================================================
# Calendar Gateway
# ============================================================================

UPSTREAM_ERRORS = (
    HttpError,
    GoogleApiClientError,
    GoogleAuthError,
    httplib2.HttpLib2Error,
    OSError,
)


class CalendarGateway:
    """Authenticated, read-only access to one Google Calendar.

    The gateway starts unauthenticated. The first call to authenticate() (or
    to any query) builds the service account credentials, exchanges the signed
    assertion for an access token and builds the Calendar API service; the
    result is kept for the gateway's lifetime. Concurrent first calls share a
    single attempt. A failed attempt leaves the gateway unauthenticated and the
    next call tries again.
    """

    def __init__(
        self,
        calendar_id: str = DEFAULT_CALENDAR_ID,
        credentials_file: Path = DEFAULT_CREDENTIALS_FILE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.calendar_id = calendar_id or DEFAULT_CALENDAR_ID
        self.credentials_file = Path(credentials_file)
        self._clock = clock
        self._credentials: Optional[service_account.Credentials] = None
        self._service: Any = None
        self._pending_auth: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CalendarGateway":
        return cls(calendar_id=settings.calendar_id, credentials_file=settings.credentials_file)

    @property
    def authenticated(self) -> bool:
        return self._service is not None

    async def authenticate(self) -> None:
        """Authenticate once; later calls return immediately.

        Raises:
            CredentialReadError: If the key file is missing or unreadable
            CredentialParseError: If the key file is malformed
            AuthenticationError: If the key is invalid or Google rejects it
        """
        if self._service is not None:
            return
        # Callers racing on first use all await the same attempt.
        if self._pending_auth is None:
            self._pending_auth = asyncio.ensure_future(self._authenticate_once())
        await asyncio.shield(self._pending_auth)

    async def _authenticate_once(self) -> None:
        try:
            key = await run_blocking(load_service_account, self.credentials_file)
            credentials, service = await run_blocking(self._build_client, key)
            self._credentials = credentials
            self._service = service
            logger.info("Google Calendar API initialized for calendar %s", self.calendar_id)
        finally:
            self._pending_auth = None

    def _build_client(self, key: ServiceAccountKey) -> tuple[service_account.Credentials, Any]:
        try:
            credentials = service_account.Credentials.from_service_account_info(
                key.model_dump(), scopes=CALENDAR_SCOPES
            )
            credentials.refresh(Request())
        except (ValueError, GoogleAuthError) as e:
            raise AuthenticationError(
                f"Service account {key.client_email} could not authenticate: {e}"
            ) from e
        try:
            service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        except UPSTREAM_ERRORS as e:
            raise AuthenticationError(f"Could not initialize the Calendar API client: {e}") from e
        return credentials, service

    def _execute(self, request) -> Dict[str, Any]:
        # httplib2.Http is not thread-safe; give each request its own connection.
        http = google_auth_httplib2.AuthorizedHttp(self._credentials, http=httplib2.Http())
        return request.execute(http=http)

    async def get_today_events(self) -> List[CalendarEvent]:
        """Events from local midnight today up to (not including) midnight tomorrow."""
        time_min, time_max = day_window(self._clock(), 1)
        return await self._list_events(time_min, time_max)

    async def get_week_events(self) -> List[CalendarEvent]:
        """Events from local midnight today up to (not including) midnight in 7 days."""
        time_min, time_max = day_window(self._clock(), WEEK_DAYS)
        return await self._list_events(time_min, time_max)

    async def _list_events(self, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        await self.authenticate()
        logger.debug(
            "Fetching events for %s from %s to %s",
            self.calendar_id,
            time_min.isoformat(),
            time_max.isoformat(),
        )

        request = self._service.events().list(
            calendarId=self.calendar_id,
            timeMin=time_min.isoformat(),
            timeMax=time_max.isoformat(),
            singleEvents=True,
            orderBy="startTime",
        )
        try:
            response = await run_blocking(self._execute, request)
        except UPSTREAM_ERRORS as e:
            raise EventFetchError(f"Failed to list events for {self.calendar_id}: {e}") from e

        if not isinstance(response, dict):
            raise EventFetchError(
                f"Unexpected {type(response).__name__} response listing events for {self.calendar_id}"
            )
        items = response.get("items") or []
        try:
            events = [event_from_api(item) for item in items]
        except (ValueError, TypeError, AttributeError) as e:
            raise EventFetchError(f"Malformed event in {self.calendar_id}: {e}") from e

        logger.info("Fetched %d events for %s", len(events), self.calendar_id)
        return events

    async def check_connection(self) -> str:
        """Authenticate and look up the calendar; returns its display name.

        Raises:
            EventFetchError: If the calendar cannot be fetched
        """
        await self.authenticate()
        request = self._service.calendarList().get(calendarId=self.calendar_id)
        try:
            entry = await run_blocking(self._execute, request)
        except UPSTREAM_ERRORS as e:
            raise EventFetchError(f"Calendar {self.calendar_id} is not reachable: {e}") from e
        if not isinstance(entry, dict):
            raise EventFetchError(
                f"Unexpected {type(entry).__name__} response for calendar {self.calendar_id}"
            )
        return entry.get("summary") or self.calendar_id


# ============================================================================
# Resources
# ============================================================================


class CustomerDirectory:
    """Stand-in customer source for the hello-world resource."""

    def __init__(self, customers: Optional[List[Dict[str, Any]]] = None):
        self._customers = customers if customers is not None else [{"id": 1, "name": "John Doe"}]

    async def get_customers(self) -> List[Dict[str, Any]]:
        return list(self._customers)


class StaticResource:
    """A fixed-URI resource. Subclasses implement read()."""

    def __init__(self, uri: str, name: str, description: str, mime_type: str = JSON_MIME_TYPE):
        self.uri = uri
        self.name = name
        self.description = description
        self.mime_type = mime_type

    def envelope(self, text: str) -> ResourceEnvelope:
        return ResourceEnvelope(uri=self.uri, mime_type=self.mime_type, text=text)

    async def read(self) -> List[ResourceEnvelope]:
        raise NotImplementedError


class HelloWorldResource(StaticResource):
    def __init__(self, directory: CustomerDirectory):
        super().__init__(HELLO_WORLD_URI, "Hello World", "Hello World Resource")
        self.directory = directory

    async def read(self) -> List[ResourceEnvelope]:
        customers = await self.directory.get_customers()
        return [self.envelope(json.dumps({"customers": customers}))]


class CalendarResource(StaticResource):
    """A resource bound to one gateway query.

    read() never raises for calendar failures: any CalendarAccessError is
    logged and turned into an envelope with no events and ``error_message``.
    """

    def __init__(
        self,
        uri: str,
        name: str,
        description: str,
        query: Callable[[], Awaitable[List[CalendarEvent]]],
        error_message: str,
    ):
        super().__init__(uri, name, description)
        self.query = query
        self.error_message = error_message

    async def read(self) -> List[ResourceEnvelope]:
        try:
            events = await self.query()
        except CalendarAccessError as e:
            logger.error("%s: %s (%s)", self.error_message, e, e.__class__.__name__)
            return [self.envelope(events_payload([], error=self.error_message))]
        return [self.envelope(events_payload(events))]


def today_calendar_resource(gateway: CalendarGateway) -> CalendarResource:
    return CalendarResource(
        TODAY_CALENDAR_URI,
        "Today's Calendar Events",
        "Returns events scheduled for today from Google Calendar",
        gateway.get_today_events,
        "Failed to fetch calendar events",
    )


def weekly_calendar_resource(gateway: CalendarGateway) -> CalendarResource:
    return CalendarResource(
        WEEKLY_CALENDAR_URI,
        "Weekly Calendar Events",
        "Returns events scheduled for the next 7 days from Google Calendar",
        gateway.get_week_events,
        "Failed to fetch calendar events for the next 7 days",
    )


# ============================================================================
# MCP Server
# ============================================================================


def register_resource(mcp: FastMCP, resource: StaticResource) -> None:
    """Expose a StaticResource on a FastMCP server under its fixed URI."""

    async def read_resource() -> str:
        envelopes = await resource.read()
        return envelopes[0].text

    mcp.resource(
        resource.uri,
        name=resource.name,
        description=resource.description,
        mime_type=resource.mime_type,
    )(read_resource)


def create_server(
    gateway: Optional[CalendarGateway] = None,
    directory: Optional[CustomerDirectory] = None,
) -> FastMCP:
    """Build the MCP server and its resources.

    The gateway is created here (from the environment) unless one is passed
    in, and is shared by both calendar resources for the server's lifetime.
    """
    if gateway is None:
        gateway = CalendarGateway.from_settings(load_settings())
    if directory is None:
        directory = CustomerDirectory()

    mcp = FastMCP(SERVER_NAME)
    for resource in (
        HelloWorldResource(directory),
        today_calendar_resource(gateway),
        weekly_calendar_resource(gateway),
    ):
        register_resource(mcp, resource)
    return mcp


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    settings = load_settings()

    # stdout carries the MCP protocol; log to stderr
    logging.basicConfig(
        level=settings.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not settings.credentials_file.exists():
        logger.warning(
            "Service account file not found at %s. Calendar resources will report "
            "errors until it exists. Set GOOGLE_SERVICE_ACCOUNT_FILE to change the path.",
            settings.credentials_file,
        )

    logger.info("Google Calendar MCP Server starting")
    logger.info("Calendar ID: %s", settings.calendar_id)
    logger.info("Service account file: %s", settings.credentials_file)
    logger.info(
        "Resources: %s, %s, %s", HELLO_WORLD_URI, TODAY_CALENDAR_URI, WEEKLY_CALENDAR_URI
    )

    create_server(CalendarGateway.from_settings(settings)).run()


if __name__ == "__main__":
    main()
