from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from shelfsync.identity import build_summary, derive_id
from shelfsync.models import GOOGLE_CALENDAR_API_BASE, CalendarEvent, LoanRecord, parse_iso_date


logger = logging.getLogger(__name__)

EVENT_KIND = "calendar#event"
CONFLICT_STATUSES = {409, 412}


class RemoteError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_conflict(self) -> bool:
        return self.status_code in CONFLICT_STATUSES


def strip_etag(etag: str | None) -> str | None:
    if etag is None:
        return None
    return etag.strip('"')


def event_body(loan: LoanRecord, etag: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"kind": EVENT_KIND}
    if etag is not None:
        body["etag"] = etag
    body["id"] = derive_id(loan)
    body["summary"] = build_summary(loan)
    body["start"] = {"date": loan.due_date.isoformat()}
    body["end"] = {"date": loan.end_date.isoformat()}
    return body


def parse_event(item: Any) -> CalendarEvent:
    if not isinstance(item, dict):
        raise RemoteError("Calendar event must be an object.")
    try:
        external_id = str(item["id"])
        start_date = parse_iso_date((item.get("start") or {}).get("date"))
        end_date = parse_iso_date((item.get("end") or {}).get("date"))
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise RemoteError(f"Malformed calendar event: {exc}") from exc
    if start_date is None or end_date is None:
        raise RemoteError(f"Calendar event {external_id} is not an all-day event.")
    summary = item.get("summary")
    etag = item.get("etag")
    return CalendarEvent(
        external_id=external_id,
        start_date=start_date,
        end_date=end_date,
        etag=str(etag) if etag is not None else None,
        summary=str(summary) if summary is not None else None,
    )


class GoogleCalendarService:
    """Reads and writes all-day events of one calendar through the REST API."""

    def __init__(
        self,
        session: requests.Session | None = None,
        api_base_url: str = GOOGLE_CALENDAR_API_BASE,
        timeout_seconds: int = 30,
    ) -> None:
        self.session = session or requests.Session()
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _events_url(self, calendar_id: str) -> str:
        return f"{self.api_base_url}/calendars/{quote(calendar_id, safe='')}/events"

    def _request(
        self,
        method: str,
        url: str,
        token: str,
        *,
        json: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> requests.Response:
        headers = {"Authorization": f"Bearer {token}"}
        headers.update(extra_headers or {})
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise RemoteError(f"{method} {url} failed: {exc}") from exc
        if not response.ok:
            raise RemoteError(
                f"{method} {url} returned HTTP {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        return response

    def list_events(self, calendar_id: str, token: str) -> list[CalendarEvent]:
        response = self._request("GET", self._events_url(calendar_id), token)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteError("Event list is not valid JSON.") from exc
        items = payload.get("items", []) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise RemoteError("Event list has no items array.")
        events: list[CalendarEvent] = []
        for item in items:
            try:
                events.append(parse_event(item))
            except RemoteError:
                # Timed events created by hand in the same calendar are not ours.
                if isinstance(item, dict) and "id" in item and "dateTime" in (item.get("start") or {}):
                    logger.debug("Skipping timed event %s", item["id"])
                    continue
                raise
        logger.info("Fetched %d events from calendar %s", len(events), calendar_id)
        return events

    def create_event(self, calendar_id: str, token: str, loan: LoanRecord) -> None:
        self._request("POST", self._events_url(calendar_id), token, json=event_body(loan))

    def update_event(self, calendar_id: str, token: str, loan: LoanRecord, event: CalendarEvent) -> None:
        etag = strip_etag(event.etag)
        url = f"{self._events_url(calendar_id)}/{quote(event.external_id, safe='')}"
        extra_headers = {"If-Match": f'"{etag}"'} if etag else None
        self._request("PUT", url, token, json=event_body(loan, etag=etag), extra_headers=extra_headers)
