import asyncio
import logging
from datetime import datetime
from typing import Optional

from google.auth.exceptions import RefreshError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calendar_sync.errors import CalendarApiError

logger = logging.getLogger(__name__)

PAGE_SIZE = 250
GONE_STATUSES = {404, 410}


def _status(err: HttpError) -> Optional[int]:
    resp = getattr(err, "resp", None)
    try:
        return int(resp.status) if resp is not None else None
    except (TypeError, ValueError):
        return None


class CalendarIntegration:
    """
    Thin async wrapper over the Google Calendar v3 events API.

    The discovery client is blocking, so every request runs in a worker
    thread. HttpError never leaks out of this class.
    """

    def __init__(self, credentials=None, service=None):
        self.credentials = credentials
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = build(
                "calendar",
                "v3",
                credentials=self.credentials,
                cache_discovery=False,
            )
        return self._service

    async def _execute(self, request, action: str):
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            status = _status(e)
            logger.error(f"Google Calendar {action} failed ({status}): {e}")
            raise CalendarApiError(f"Failed to {action}: {e}", status=status) from e

    async def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list:
        """All single events overlapping [time_min, time_max), following page tokens."""
        events = []
        page_token = None
        while True:
            request = self.service.events().list(
                calendarId=calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                orderBy="startTime",
                maxResults=PAGE_SIZE,
                pageToken=page_token,
            )
            result = await self._execute(request, "list Google Calendar events")
            events.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        logger.info(f"Fetched {len(events)} events from calendar {calendar_id}")
        return events

    async def get_event(self, calendar_id: str, event_id: str) -> Optional[dict]:
        """Fetch one event; None when it was deleted or cancelled."""
        request = self.service.events().get(calendarId=calendar_id, eventId=event_id)
        try:
            event = await self._execute(request, "get Google Calendar event")
        except CalendarApiError as e:
            if e.status in GONE_STATUSES:
                return None
            raise
        if event.get("status") == "cancelled":
            return None
        return event

    async def create_event(self, calendar_id: str, body: dict) -> dict:
        request = self.service.events().insert(calendarId=calendar_id, body=body)
        event = await self._execute(request, "create Google Calendar event")
        logger.info(f"Created Google Calendar event {event.get('id')}")
        return event

    async def update_event(self, calendar_id: str, event_id: str, body: dict) -> dict:
        request = self.service.events().patch(
            calendarId=calendar_id, eventId=event_id, body=body
        )
        event = await self._execute(request, "update Google Calendar event")
        logger.info(f"Updated Google Calendar event {event_id}")
        return event

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event. An already-deleted event counts as success."""
        request = self.service.events().delete(calendarId=calendar_id, eventId=event_id)
        try:
            await self._execute(request, "delete Google Calendar event")
        except CalendarApiError as e:
            if e.status in GONE_STATUSES:
                logger.info(f"Google Calendar event {event_id} already gone")
                return False
            raise
        logger.info(f"Deleted Google Calendar event {event_id}")
        return True

    async def get_calendar(self, calendar_id: str = "primary") -> dict:
        request = self.service.calendars().get(calendarId=calendar_id)
        return await self._execute(request, "get Google Calendar")


def calendar_factory(auth_store):
    """
    Build the per-user client factory the sync services take. The factory
    yields None when the user has no usable credentials.
    """

    async def for_user(user_id: str) -> Optional[CalendarIntegration]:
        if auth_store is None:
            return None
        try:
            credentials = await auth_store.get_valid_credentials(user_id)
        except RefreshError as e:
            logger.warning(f"Token refresh failed for user {user_id}: {e}")
            return None
        if credentials is None:
            return None
        return CalendarIntegration(credentials)

    return for_user
