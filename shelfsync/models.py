from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any


GOOGLE_TOKEN_URL = "https://www.googleapis.com/oauth2/v3/token"
GOOGLE_CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
MIN_INTERVAL_SECONDS = 60


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_iso_date(value: str | date | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


@dataclass
class PortalConfig:
    base_url: str = ""
    userid: str = ""
    password: str = ""
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "PortalConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip().rstrip("/"),
            userid=str(data.get("userid", "")).strip(),
            password=str(data.get("password", "")).strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )

    def is_complete(self) -> bool:
        return bool(self.base_url and self.userid)


@dataclass
class GoogleConfig:
    client_email: str = ""
    private_key_id: str = ""
    private_key: str = ""
    calendar_id: str = ""
    token_url: str = GOOGLE_TOKEN_URL
    api_base_url: str = GOOGLE_CALENDAR_API_BASE
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GoogleConfig":
        data = data or {}
        return cls(
            client_email=str(data.get("client_email", "")).strip(),
            private_key_id=str(data.get("private_key_id", "")).strip(),
            # PEM bodies keep their inner newlines; only outer whitespace goes.
            private_key=str(data.get("private_key", "")).strip(),
            calendar_id=str(data.get("calendar_id", "")).strip(),
            token_url=str(data.get("token_url", GOOGLE_TOKEN_URL)).strip() or GOOGLE_TOKEN_URL,
            api_base_url=str(data.get("api_base_url", GOOGLE_CALENDAR_API_BASE)).strip().rstrip("/")
            or GOOGLE_CALENDAR_API_BASE,
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )

    def is_complete(self) -> bool:
        return bool(self.client_email and self.private_key and self.calendar_id)

    def credential(self) -> "ServiceAccountCredential":
        return ServiceAccountCredential(
            email=self.client_email,
            private_key_pem=self.private_key,
            private_key_id=self.private_key_id,
        )


@dataclass
class SyncConfig:
    interval_seconds: int = 3600
    dry_run: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            interval_seconds=max(MIN_INTERVAL_SECONDS, int(data.get("interval_seconds", 3600))),
            dry_run=bool(data.get("dry_run", False)),
        )


@dataclass
class AppConfig:
    portal: PortalConfig = field(default_factory=PortalConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            portal=PortalConfig.from_dict(data.get("portal")),
            google=GoogleConfig.from_dict(data.get("google")),
            sync=SyncConfig.from_dict(data.get("sync")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ServiceAccountCredential:
    email: str
    private_key_pem: str
    private_key_id: str = ""


@dataclass(frozen=True)
class LoanRecord:
    """One borrowed item as listed by the library portal.

    ``borrowed_date`` and ``title`` identify the loan across runs; ``due_date``
    and ``is_reserved`` may change between runs for the same loan.
    """

    is_reserved: bool
    lender: str
    holder: str
    due_date: date
    borrowed_date: date
    title: str

    @property
    def end_date(self) -> date:
        return self.due_date + timedelta(days=1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_reserved": self.is_reserved,
            "lender": self.lender,
            "holder": self.holder,
            "due_date": self.due_date.isoformat(),
            "borrowed_date": self.borrowed_date.isoformat(),
            "title": self.title,
        }


@dataclass(frozen=True)
class CalendarEvent:
    external_id: str
    start_date: date
    end_date: date
    etag: str | None = None
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "external_id": self.external_id,
            "etag": self.etag,
            "summary": self.summary,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    created: int
    updated: int
    unchanged: int
    trigger: str
    dry_run: bool = False
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def changes_applied(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "changes_applied": self.changes_applied,
            "trigger": self.trigger,
            "dry_run": self.dry_run,
            "run_at": serialize_datetime(self.run_at),
        }


def default_app_config() -> AppConfig:
    return AppConfig()
