from __future__ import annotations

import logging
from datetime import date, datetime

import requests
from bs4 import BeautifulSoup

from shelfsync.models import LoanRecord, PortalConfig


logger = logging.getLogger(__name__)

LOGIN_PATH = "/comidf.do"
LOAN_LIST_PATH = "/lenlst.do"
LOAN_LIST_SIZE = "20"
LOAN_TABLE_SELECTOR = "table.opac_data_list_ex"
RESERVED_STATUS = "予約有"
PORTAL_DATE_FORMAT = "%Y/%m/%d"
MIN_CELLS = 8


class PortalError(Exception):
    pass


class ParseError(Exception):
    pass


def _cell_text(cell) -> str:
    return cell.get_text().replace("\n", "").replace("\t", "")


def parse_portal_date(value: str) -> date:
    try:
        return datetime.strptime(value.strip(), PORTAL_DATE_FORMAT).date()
    except ValueError as exc:
        raise ParseError(f"Cannot parse date from '{value}'") from exc


def parse_loans_from_html(html: str) -> list[LoanRecord]:
    soup = BeautifulSoup(html, "lxml")
    table = soup.select_one(LOAN_TABLE_SELECTOR)
    if table is None:
        raise ParseError("Loan table not found")

    loans: list[LoanRecord] = []
    rows = table.find_all("tr")
    for index, row in enumerate(rows[1:], start=1):
        cells = [_cell_text(cell) for cell in row.find_all(["td", "th"], recursive=False)]
        if len(cells) < MIN_CELLS:
            raise ParseError(f"Row {index} has {len(cells)} cells, expected at least {MIN_CELLS}")
        title = cells[7].strip()
        if not title:
            raise ParseError(f"Row {index} has an empty title")
        loans.append(
            LoanRecord(
                is_reserved=cells[2].strip() == RESERVED_STATUS,
                lender=cells[3].strip(),
                holder=cells[4].strip(),
                due_date=parse_portal_date(cells[5]),
                borrowed_date=parse_portal_date(cells[6]),
                title=title,
            )
        )
    return loans


class PortalClient:
    """Logs in to the library portal and lists the current loans.

    The session carries the login cookie, so one client serves one run.
    """

    def __init__(self, config: PortalConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _post(self, path: str, data: dict[str, str]) -> str:
        url = f"{self.config.base_url}{path}"
        try:
            response = self.session.post(url, data=data, timeout=self.config.timeout_seconds)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise PortalError(f"POST {url} failed: {exc}") from exc
        return response.text

    def log_in(self) -> None:
        if not self.config.base_url or not self.config.userid:
            raise PortalError("Portal config is incomplete.")
        self._post(LOGIN_PATH, {"userid": self.config.userid, "password": self.config.password})

    def fetch_loans(self) -> list[LoanRecord]:
        self.log_in()
        html = self._post(LOAN_LIST_PATH, {"listcnt": LOAN_LIST_SIZE})
        loans = parse_loans_from_html(html)
        logger.info("Parsed %d loans from portal", len(loans))
        return loans

    def close(self) -> None:
        self.session.close()
