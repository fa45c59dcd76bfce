"""
Google Calendar 이벤트 조회 및 회의 링크 추출
"""

import logging
import re
from datetime import datetime

import httpx

from provider.base import CalendarProvider
from provider.exception import ProviderError, ProviderNotConfiguredError
from provider.model.provider import CalendarEvent, CalendarSettings
from store.model.store import CalendarConnection

logger = logging.getLogger(__name__)

MEETING_URL_PATTERNS = (
    re.compile(r"https://[\w.-]+\.zoom\.us/j/\d+(?:\?pwd=[\w.-]+)?"),
    re.compile(r"https://meet\.google\.com/[\w-]+"),
    re.compile(r"https://teams\.microsoft\.com/l/meetup-join/[\w%.\-/]+"),
    re.compile(r"https://[\w.-]+\.webex\.com/[\w.-]+/j\.php\?[\w=&]+"),
)

PLATFORM_HOSTS = (
    ("zoom.us", "zoom"),
    ("meet.google.com", "meet"),
    ("teams.microsoft.com", "teams"),
    ("webex.com", "webex"),
)


def detect_platform(url: str | None) -> str | None:
    """URL 호스트로 회의 플랫폼 판별 (zoom, meet, teams, webex)"""
    if not url:
        return None
    for host, platform in PLATFORM_HOSTS:
        if host in url:
            return platform
    return None


def extract_meeting_url(text: str | None) -> str | None:
    """자유 텍스트에서 첫 번째 회의 URL"""
    if not text:
        return None
    for pattern in MEETING_URL_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def extract_meeting_link(item: dict) -> tuple[str | None, str | None]:
    """
    Google 이벤트에서 회의 링크 추출

    우선순위: hangoutLink > conferenceData 비디오 진입점 > 설명 > 장소

    Returns:
        (url, platform)
    """
    if item.get("hangoutLink"):
        return item["hangoutLink"], "meet"

    for entry in (item.get("conferenceData") or {}).get("entryPoints") or []:
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"], detect_platform(entry["uri"])

    for field in ("description", "location"):
        url = extract_meeting_url(item.get(field))
        if url:
            return url, detect_platform(url)

    return None, None


def _parse_time(value: dict | None) -> datetime | None:
    if not value:
        return None
    raw = value.get("dateTime") or value.get("date")
    if not raw:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar v3 (primary 캘린더)"""

    def __init__(self, settings: CalendarSettings, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    async def list_events(
        self,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
    ) -> list[CalendarEvent]:
        if not connection.access_token:
            raise ProviderNotConfiguredError("google", f"access token for connection {connection.id}")

        params = {
            "timeMin": time_min.isoformat(),
            "timeMax": time_max.isoformat(),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        headers = {"Authorization": f"Bearer {connection.access_token}"}
        url = f"{self._settings.base_url}/calendars/primary/events"

        events: list[CalendarEvent] = []
        async with httpx.AsyncClient(
            headers=headers,
            timeout=self._settings.timeout_seconds,
            transport=self._transport,
        ) as client:
            page_token = None
            while True:
                if page_token:
                    params["pageToken"] = page_token
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    raise ProviderError("google", f"List events failed: {e}", e.response.status_code)
                except httpx.HTTPError as e:
                    raise ProviderError("google", f"List events failed: {e}")

                data = response.json()
                for item in data.get("items") or []:
                    event = self._to_event(item)
                    if event:
                        events.append(event)

                page_token = data.get("nextPageToken")
                if not page_token:
                    break

        logger.debug(f"Fetched {len(events)} events for connection {connection.id}")
        return events

    def _to_event(self, item: dict) -> CalendarEvent | None:
        start = _parse_time(item.get("start"))
        if not item.get("id") or start is None:
            return None
        meeting_link, platform = extract_meeting_link(item)
        return CalendarEvent(
            id=item["id"],
            summary=item.get("summary") or "Untitled Event",
            start=start,
            end=_parse_time(item.get("end")),
            meeting_link=meeting_link,
            platform=platform,
        )
