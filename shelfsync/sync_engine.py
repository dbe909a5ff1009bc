from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol

import requests

from shelfsync.auth import get_access_token
from shelfsync.calendar_client import GoogleCalendarService
from shelfsync.config_manager import ConfigManager
from shelfsync.identity import derive_id
from shelfsync.models import CalendarEvent, LoanRecord, ServiceAccountCredential, SyncResult
from shelfsync.portal import PortalClient
from shelfsync.reconciler import Action, Create, Update, reconcile
from shelfsync.state_store import StateStore


logger = logging.getLogger(__name__)


class CalendarClient(Protocol):
    def list_events(self, calendar_id: str, token: str) -> list[CalendarEvent]: ...

    def create_event(self, calendar_id: str, token: str, loan: LoanRecord) -> None: ...

    def update_event(self, calendar_id: str, token: str, loan: LoanRecord, event: CalendarEvent) -> None: ...


TokenProvider = Callable[[ServiceAccountCredential], str]
ActionCallback = Callable[[Action], None]


@dataclass
class SyncReport:
    actions: list[Action] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    unchanged: int = 0


def apply_action(client: CalendarClient, calendar_id: str, token: str, action: Action) -> None:
    if isinstance(action, Create):
        client.create_event(calendar_id, token, action.loan)
    elif isinstance(action, Update):
        client.update_event(calendar_id, token, action.loan, action.event)


def synchronize(
    *,
    loans: Iterable[LoanRecord],
    credential: ServiceAccountCredential,
    calendar_id: str,
    calendar_client: CalendarClient,
    token_provider: TokenProvider = get_access_token,
    dry_run: bool = False,
    on_action: ActionCallback | None = None,
) -> SyncReport:
    """Bring ``calendar_id`` in line with ``loans``.

    Obtains one access token, lists the calendar once and then writes at most
    one event per loan, in the order the loans were given. ``AuthError`` and
    ``RemoteError`` propagate; writes that already went through stay applied.
    """
    loans = list(loans)
    token = token_provider(credential)
    events = calendar_client.list_events(calendar_id, token)
    report = SyncReport(actions=reconcile(loans, events))

    for action in report.actions:
        if isinstance(action, Create):
            report.created += 1
        elif isinstance(action, Update):
            report.updated += 1
        else:
            report.unchanged += 1
            continue
        logger.info(
            "%s%s %s due %s",
            "[dry-run] " if dry_run else "",
            action.kind.upper(),
            action.loan.title,
            action.loan.due_date.isoformat(),
        )
        if not dry_run:
            apply_action(calendar_client, calendar_id, token, action)
        if on_action is not None:
            on_action(action)

    logger.info(
        "Sync complete: %d created, %d updated, %d unchanged",
        report.created,
        report.updated,
        report.unchanged,
    )
    return report


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


class SyncEngine:
    def __init__(self, config_manager: ConfigManager, state_store: StateStore) -> None:
        self.config_manager = config_manager
        self.state_store = state_store

    def run_once(self, trigger: str = "manual", dry_run: bool | None = None) -> SyncResult:
        started_at = datetime.now(timezone.utc)
        report = SyncReport()
        run_dry = False
        run_id = self.state_store.start_sync_run(trigger=trigger)

        def _finish(status: str, message: str) -> SyncResult:
            duration_ms = _elapsed_ms(started_at)
            self.state_store.finish_sync_run(
                run_id=run_id,
                status=status,
                message=message,
                duration_ms=duration_ms,
                created=report.created,
                updated=report.updated,
                unchanged=report.unchanged,
            )
            return SyncResult(
                status=status,
                message=message,
                duration_ms=duration_ms,
                created=report.created,
                updated=report.updated,
                unchanged=report.unchanged,
                trigger=trigger,
                dry_run=run_dry,
            )

        try:
            config = self.config_manager.load()
            run_dry = config.sync.dry_run if dry_run is None else bool(dry_run)
            if not config.portal.is_complete():
                logger.warning("Portal config missing base_url/userid, sync skipped")
                return _finish("skipped", "Portal config missing base_url/userid. Sync skipped.")
            if not config.google.is_complete():
                logger.warning("Google config missing client_email/private_key/calendar_id, sync skipped")
                return _finish(
                    "skipped",
                    "Google config missing client_email/private_key/calendar_id. Sync skipped.",
                )

            with requests.Session() as session:
                portal = PortalClient(config.portal, session=session)
                loans = portal.fetch_loans()

            def _token(credential: ServiceAccountCredential) -> str:
                return get_access_token(
                    credential,
                    token_url=config.google.token_url,
                    timeout_seconds=config.google.timeout_seconds,
                )

            def _record(action: Action) -> None:
                details = {"trigger": trigger, "dry_run": run_dry, "loan": action.loan.to_dict()}
                if isinstance(action, Update):
                    details["previous"] = action.event.to_dict()
                self.state_store.record_audit_event(
                    run_id=run_id,
                    calendar_id=config.google.calendar_id,
                    uid=derive_id(action.loan),
                    action=action.kind,
                    details=details,
                )

            with requests.Session() as session:
                calendar_client = GoogleCalendarService(
                    session=session,
                    api_base_url=config.google.api_base_url,
                    timeout_seconds=config.google.timeout_seconds,
                )
                report = synchronize(
                    loans=loans,
                    credential=config.google.credential(),
                    calendar_id=config.google.calendar_id,
                    calendar_client=calendar_client,
                    token_provider=_token,
                    dry_run=run_dry,
                    on_action=_record,
                )

            message = (
                f"Processed {len(loans)} loans: {report.created} created, "
                f"{report.updated} updated, {report.unchanged} unchanged."
            )
            return _finish("success", message)
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            logger.error("Sync run %s failed: %s", run_id, error_message)
            self.state_store.record_audit_event(
                run_id=run_id,
                calendar_id="system",
                uid="sync",
                action="run_error",
                details={
                    "trigger": trigger,
                    "error": error_message,
                    "traceback": traceback.format_exc(limit=5),
                },
            )
            return _finish("error", error_message)
