from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union

from shelfsync.identity import derive_id, is_marked_reserved
from shelfsync.models import CalendarEvent, LoanRecord


@dataclass(frozen=True)
class Create:
    loan: LoanRecord
    kind: str = "create"


@dataclass(frozen=True)
class Update:
    loan: LoanRecord
    event: CalendarEvent
    kind: str = "update"


@dataclass(frozen=True)
class NoOp:
    loan: LoanRecord
    kind: str = "noop"


Action = Union[Create, Update, NoOp]


def is_up_to_date(event: CalendarEvent, loan: LoanRecord) -> bool:
    return event.end_date == loan.end_date and is_marked_reserved(event.summary) == loan.is_reserved


def _index_by_id(events: Iterable[CalendarEvent]) -> dict[str, CalendarEvent]:
    index: dict[str, CalendarEvent] = {}
    for event in events:
        # First event wins when the calendar holds duplicates of an id.
        index.setdefault(event.external_id, event)
    return index


def reconcile(loans: Iterable[LoanRecord], existing_events: Iterable[CalendarEvent]) -> list[Action]:
    """Decide what to do with each loan, one action per loan in input order."""
    by_id = _index_by_id(existing_events)
    actions: list[Action] = []
    for loan in loans:
        matched = by_id.get(derive_id(loan))
        if matched is None:
            actions.append(Create(loan=loan))
        elif is_up_to_date(matched, loan):
            actions.append(NoOp(loan=loan))
        else:
            actions.append(Update(loan=loan, event=matched))
    return actions
