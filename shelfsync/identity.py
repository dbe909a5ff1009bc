from __future__ import annotations

import base64

from shelfsync.models import LoanRecord


RESERVED_MARKER = "[予約有] "
ID_TITLE_CHARS = 50


def derive_id(loan: LoanRecord) -> str:
    """Return the calendar event id bound to ``loan``.

    Built from the borrowed date and the first 50 code points of the title,
    encoded as lowercase unpadded base32hex so the result only contains
    characters ``0-9a-v``. Loans sharing a borrowed date and those 50 code
    points map to the same id.
    """
    key = loan.borrowed_date.isoformat() + loan.title[:ID_TITLE_CHARS]
    encoded = base64.b32hexencode(key.encode("utf-8")).decode("ascii")
    return encoded.rstrip("=").lower()


def build_summary(loan: LoanRecord) -> str:
    if loan.is_reserved:
        return RESERVED_MARKER + loan.title
    return loan.title


def is_marked_reserved(summary: str | None) -> bool:
    if not summary:
        return False
    return summary.startswith(RESERVED_MARKER)
