"""Transaction extraction for Banesco Online.

This module provides the BanescoScraper class, which finds the movements
table on an authenticated page, turns its rows into TransactionRecord
objects, follows the "Siguiente" pagination and reads the account summary.
When no table yields a movement it falls back to scanning free text.
"""

import re
from datetime import datetime, timezone
from typing import Any

import structlog

from banesco_scraper.browser.probes import build_chains
from banesco_scraper.models import (
    AccountSummary,
    Direction,
    ScrapeResult,
    TableCandidate,
    TransactionRecord,
)
from banesco_scraper.parsing import (
    contains_any,
    fold,
    infer_direction,
    parse_amount,
    standardize_date,
)

logger = structlog.get_logger(__name__)

PROBE_NAMES = ("movements_link", "next_page", "settle", "period_select", "consult")

SCORE_THRESHOLD = 1.0
DEFAULT_MAX_PAGES = 10
DEFAULT_FALLBACK_CAP = 10

HEADER_KEYWORDS: dict[str, tuple[str, ...]] = {
    "date": ("fecha", "date"),
    "description": ("descripcion", "description", "concepto", "detalle"),
    "amount": ("monto", "amount", "importe"),
    "balance": ("saldo", "balance"),
    "direction": ("debito", "credito", "debit", "credit", "d/c"),
    "reference": ("referencia", "reference", "ref"),
}

# Positional layout of the Banesco movements table
DEFAULT_COLUMN_ORDER = ("date", "description", "reference", "amount", "marker", "balance")

TABLES_SCRIPT = """() => Array.from(document.querySelectorAll('table')).map((table, index) => ({
    index,
    nested: table.querySelector('table') !== null,
    rows: Array.from(table.rows).map(
        (row) => Array.from(row.cells).map((cell) => (cell.innerText || '').trim())
    ),
}))"""

TABLE_ROWS_SCRIPT = """(index) => {
    const table = document.querySelectorAll('table')[index];
    if (!table) return [];
    return Array.from(table.rows).map(
        (row) => Array.from(row.cells).map((cell) => (cell.innerText || '').trim())
    );
}"""

TEXT_NODES_SCRIPT = """() => Array.from(document.querySelectorAll('div, span, p'))
    .map((el) => (el.innerText || '').trim())
    .filter((text) => text.length > 30 && text.length < 500)"""

_FREE_TEXT_DATE = re.compile(r"\b\d{1,2}[/\-.]\d{1,2}[/\-.](?:\d{4}|\d{2})\b")
_FREE_TEXT_AMOUNT = re.compile(r"(?<![\d.,])-?\d{1,3}(?:\.\d{3})*,\d{2}(?![\d,])")

_CURRENT_BALANCE = (
    re.compile(r"saldo\s+actual[:\s]+(?:bs\.?\s*)?(-?[\d.,]*\d)"),
    re.compile(r"saldo\s+disponible[:\s]+(?:bs\.?\s*)?(-?[\d.,]*\d)"),
)
_PREVIOUS_BALANCE = (
    re.compile(r"saldo\s+anterior[:\s]+(?:bs\.?\s*)?(-?[\d.,]*\d)"),
    re.compile(r"saldo\s+inicial[:\s]+(?:bs\.?\s*)?(-?[\d.,]*\d)"),
)
_GENERIC_BALANCE = re.compile(r"(?:saldo|balance|total)[:\s]+(?:bs\.?\s*)?(-?\d[\d.,]*\d)")
_ACCOUNT_NUMBER = (
    re.compile(r"(?:cuenta|account|numero)[^\d]{0,30}(\d{4}-\d{4}-\d{2}-\d{10})"),
    re.compile(r"(?:cuenta|account|numero)(?:\s+(?:nro|no)\.?)?[:\s#]+(\d{10,20})"),
)
_ACCOUNT_TYPES = (
    ("corriente", "corriente"),
    ("ahorro", "ahorro"),
    ("tarjeta", "tarjeta"),
    ("credito", "credito"),
)


class ScraperError(Exception):
    """Raised when scraping operations fail."""

    pass


class RowParseError(ScraperError):
    """Raised when a table row cannot be turned into a transaction."""

    pass


def score_table(header_texts: list[str], row_count: int) -> float:
    """Score how much a table looks like a movements table.

    Tables with one row or fewer never qualify. Otherwise one point for the
    row count plus one point per keyword group found in the header row.
    Body cells are not scored, so layout tables mentioning "saldo" stay out.
    """
    if row_count <= 1:
        return 0.0

    headers = " | ".join(fold(text) for text in header_texts)
    groups = sum(
        1 for words in HEADER_KEYWORDS.values() if any(word in headers for word in words)
    )
    return 1.0 + groups


def map_columns(header_texts: list[str]) -> dict[str, int]:
    """Map header cells to transaction fields by fuzzy name matching."""
    columns: dict[str, int] = {}
    for index, raw in enumerate(header_texts):
        header = fold(raw)
        if not header:
            continue

        has_debit = "debito" in header or "debit" in header or "cargo" in header
        has_credit = "credito" in header or "credit" in header or "abono" in header

        if "fecha" in header or "date" in header:
            field = "date"
        elif any(word in header for word in ("descripcion", "description", "concepto", "detalle")):
            field = "description"
        elif "saldo" in header or "balance" in header:
            field = "balance"
        elif any(word in header for word in ("monto", "importe", "amount")):
            field = "amount"
        elif "ref" in header:
            field = "reference"
        elif header.replace(" ", "") in ("d/c", "dc", "c/d", "tipo") or (has_debit and has_credit):
            field = "marker"
        elif has_debit:
            field = "debit"
        elif has_credit:
            field = "credit"
        else:
            continue

        columns.setdefault(field, index)
    return columns


def resolve_columns(header_texts: list[str], column_count: int) -> tuple[dict[str, int], bool]:
    """Column mapping for a table, falling back to the positional layout.

    Returns:
        The mapping and whether the positional default was used.
    """
    columns = map_columns(header_texts)
    if not columns:
        positional = {
            field: index for index, field in enumerate(DEFAULT_COLUMN_ORDER) if index < column_count
        }
        return positional, True

    used = set(columns.values())
    for field in ("date", "description"):
        index = DEFAULT_COLUMN_ORDER.index(field)
        if field not in columns and index not in used and index < column_count:
            columns[field] = index
            used.add(index)
    return columns, False


def parse_row(cells: list[str], columns: dict[str, int]) -> TransactionRecord:
    """Convert one table row into a TransactionRecord.

    Raises:
        RowParseError: If the date, description or amount is unusable.
    """

    def cell(field: str) -> str:
        index = columns.get(field)
        if index is None or index >= len(cells):
            return ""
        return cells[index].strip()

    date_text = cell("date")
    description = " ".join(cell("description").split())
    if not date_text or not description:
        raise RowParseError("Row is missing a date or description")

    try:
        when = standardize_date(date_text)
    except ValueError as e:
        raise RowParseError(f"Invalid date {date_text!r}") from e

    amount_text = cell("amount")
    marker = cell("marker")
    if not amount_text:
        credit_text, debit_text = cell("credit"), cell("debit")
        if _has_value(credit_text):
            amount_text, marker = credit_text, marker or "+"
        elif _has_value(debit_text):
            amount_text, marker = debit_text, marker or "-"

    try:
        amount = parse_amount(amount_text)
    except ValueError as e:
        raise RowParseError(f"Invalid amount {amount_text!r}") from e

    if marker:
        direction = infer_direction(marker)
    elif amount_text.lstrip().startswith("+"):
        direction = Direction.CREDIT
    else:
        direction = Direction.DEBIT

    balance = None
    balance_text = cell("balance")
    if balance_text:
        try:
            balance = parse_amount(balance_text)
        except ValueError:
            logger.debug("balance_unparseable", text=balance_text)

    return TransactionRecord(
        date=when,
        description=description,
        reference=cell("reference") or None,
        amount=abs(amount),
        direction=direction,
        balance=balance,
    )


def _has_value(text: str) -> bool:
    try:
        return parse_amount(text) != 0
    except ValueError:
        return False


def parse_account_summary(text: str) -> AccountSummary:
    """Regex scan of page text for balances, account number and type.

    Each field is extracted independently; anything not found stays None.
    """
    folded = fold(text)
    summary = AccountSummary()

    def first_amount(patterns: tuple[re.Pattern[str], ...]) -> Any:
        for pattern in patterns:
            match = pattern.search(folded)
            if match:
                try:
                    return parse_amount(match.group(1))
                except ValueError:
                    continue
        return None

    summary.current_balance = first_amount(_CURRENT_BALANCE)
    summary.previous_balance = first_amount(_PREVIOUS_BALANCE)

    # Unlabelled balances: first is current, second is previous
    if summary.current_balance is None and summary.previous_balance is None:
        generic = []
        for match in _GENERIC_BALANCE.finditer(folded):
            try:
                generic.append(parse_amount(match.group(1)))
            except ValueError:
                continue
        if generic:
            summary.current_balance = generic[0]
        if len(generic) > 1:
            summary.previous_balance = generic[1]

    for pattern in _ACCOUNT_NUMBER:
        match = pattern.search(folded)
        if match:
            summary.account_number = match.group(1)
            break

    for keyword, account_type in _ACCOUNT_TYPES:
        if keyword in folded:
            summary.account_type = account_type
            break

    return summary


class BanescoScraper:
    """Scraper for Banesco Online movements.

    Attributes:
        probes: Probe chains for the movements link, next-page control,
            period dropdown, "Consultar" button and the settle wait.
        periods: Consultation periods, narrowest first.
        max_pages: Upper bound on pages followed through pagination.
    """

    def __init__(
        self,
        selectors: dict[str, Any],
        max_pages: int = DEFAULT_MAX_PAGES,
        settle_pause_ms: int | None = None,
    ) -> None:
        """Initialize BanescoScraper.

        Args:
            selectors: Dictionary loaded from selectors.yaml.
            max_pages: Maximum number of pages to visit.
            settle_pause_ms: Pause after pagination clicks. Defaults to the
                ``transactions.settle_pause_ms`` selector setting.
        """
        section = selectors["transactions"]
        self.portal = selectors["portal"]
        self.probes = build_chains(section, PROBE_NAMES)
        self.more_records = section["more_records"]
        self.no_movements = section["no_movements"]
        self.periods: list[dict[str, str]] = section.get("periods", [])
        self.fallback_cap = int(section.get("fallback_cap", DEFAULT_FALLBACK_CAP))
        self.max_pages = max_pages
        self.settle_pause_ms = (
            settle_pause_ms
            if settle_pause_ms is not None
            else int(section.get("settle_pause_ms", 1000))
        )

    async def scrape_transactions(
        self, surface: Any, *, open_movements: bool = False, period: str | None = None
    ) -> ScrapeResult:
        """Extract all movements and the account summary from the current page.

        Args:
            surface: PageSurface of an authenticated page.
            open_movements: Navigate to the movements page first.
            period: Consultation period to select before extracting; see
                select_period.

        Returns:
            ScrapeResult; failures are reported with ``success=False``.
        """
        logger.info("scraping_transactions", open_movements=open_movements, period=period)
        try:
            result = await self._scrape(surface, open_movements, period)
        except Exception as e:
            logger.error("transactions_scraping_failed", error=str(e), exc_info=True)
            return ScrapeResult(
                success=False,
                message=f"Failed to scrape transactions: {e}",
                metadata={"extraction_method": "none", "extracted_at": _now_iso()},
            )

        logger.info(
            "transactions_scraped_successfully",
            count=len(result.records),
            method=result.metadata.get("extraction_method"),
            pages=result.metadata.get("pages_visited"),
        )
        return result

    async def _scrape(
        self, surface: Any, open_movements: bool, period: str | None
    ) -> ScrapeResult:
        try:
            if open_movements:
                await self.open_movements(surface)

            selected_period = None
            if period:
                selected_period = await self.select_period(surface, period)

            summary = await self.extract_account_summary(surface)
            metadata: dict[str, Any] = {
                "page_title": await surface.title(),
                "current_url": await surface.current_url(),
                "extracted_at": _now_iso(),
                "no_movements": False,
                "period": selected_period,
                "pages_visited": 1,
                "tables_found": 0,
                "rows_skipped": 0,
            }

            if contains_any(await surface.text(), self.no_movements):
                logger.info("no_movements_for_period")
                metadata.update(extraction_method="none", no_movements=True)
                return ScrapeResult(
                    success=True,
                    message="No movements for the selected period",
                    summary=summary,
                    metadata=metadata,
                )

            records, stats = await self._extract_pages(surface)
            metadata.update(stats)

            if not records:
                if metadata["tables_found"]:
                    logger.info("candidate_tables_yielded_nothing", tables=metadata["tables_found"])
                records = await self.alternative_extraction(surface)
                metadata["extraction_method"] = "alternative"
                message = f"{len(records)} low-confidence movements from page text"
            else:
                metadata["extraction_method"] = "table"
                message = f"{len(records)} movements extracted"

            return ScrapeResult(
                success=True,
                message=message,
                records=records,
                summary=summary,
                metadata=metadata,
            )

        except ScraperError:
            raise
        except Exception as e:
            raise ScraperError(str(e)) from e

    async def analyze(self, surface: Any) -> list[TableCandidate]:
        """Score every table on the page and keep the likely movements tables.

        Returns:
            Candidates above the score threshold, best first.
        """
        tables = await surface.evaluate(TABLES_SCRIPT) or []
        candidates = []

        for table in tables:
            rows = table.get("rows") or []
            if table.get("nested") or not rows:
                continue

            header_texts = rows[0]
            score = score_table(header_texts, len(rows))
            if score <= SCORE_THRESHOLD:
                continue

            candidates.append(
                TableCandidate(
                    index=table["index"],
                    row_count=len(rows),
                    column_count=max(len(row) for row in rows),
                    header_texts=header_texts,
                    score=score,
                )
            )

        candidates.sort(key=lambda candidate: candidate.score, reverse=True)
        logger.debug(
            "tables_analyzed",
            tables=len(tables),
            candidates=[(c.index, c.score) for c in candidates],
        )
        return candidates

    async def extract(
        self, surface: Any, candidates: list[TableCandidate]
    ) -> tuple[list[TransactionRecord], int]:
        """Parse the rows of each candidate table.

        Rows that cannot be parsed are logged and counted, never fatal.

        Returns:
            Parsed records and the number of skipped rows.
        """
        records: list[TransactionRecord] = []
        skipped = 0

        for candidate in candidates:
            rows = await surface.evaluate(TABLE_ROWS_SCRIPT, candidate.index) or []
            if not rows:
                continue

            columns, positional = resolve_columns(rows[0], candidate.column_count)

            for row_number, cells in enumerate(rows[1:], start=1):
                if not any(cell.strip() for cell in cells):
                    continue
                try:
                    records.append(parse_row(cells, columns))
                except RowParseError as e:
                    skipped += 1
                    logger.debug(
                        "transaction_row_skipped",
                        table=candidate.index,
                        row=row_number,
                        reason=str(e),
                    )

            logger.debug(
                "table_extracted",
                table=candidate.index,
                positional=positional,
                columns=columns,
            )

        if skipped:
            logger.info("transaction_rows_skipped", count=skipped)
        return records, skipped

    async def _extract_pages(self, surface: Any) -> tuple[list[TransactionRecord], dict[str, int]]:
        records: list[TransactionRecord] = []
        stats = {"pages_visited": 0, "tables_found": 0, "rows_skipped": 0}
        page = 1

        while True:
            stats["pages_visited"] = page
            candidates = await self.analyze(surface)
            if not candidates and page == 1:
                return records, stats

            page_records, skipped = await self.extract(surface, candidates)
            records.extend(page_records)
            stats["tables_found"] += len(candidates)
            stats["rows_skipped"] += skipped
            logger.info("transaction_page_extracted", page=page, count=len(page_records))

            if page >= self.max_pages:
                logger.warning("pagination_limit_reached", max_pages=self.max_pages)
                break
            if not contains_any(await surface.text(), self.more_records):
                break
            if not await self._next_page(surface):
                break
            page += 1

        return records, stats

    async def _next_page(self, surface: Any) -> bool:
        control = await self.probes["next_page"].first(surface)
        if control is None:
            logger.warning("next_page_control_not_found")
            return False

        await surface.click(control)
        await self.probes["settle"].first(surface)
        await surface.pause(self.settle_pause_ms)
        return True

    async def alternative_extraction(self, surface: Any) -> list[TransactionRecord]:
        """Build low-confidence records from free text with a date and amount.

        Returns:
            At most ``fallback_cap`` records, one per distinct date/amount pair.
        """
        texts = await surface.evaluate(TEXT_NODES_SCRIPT) or []
        records: list[TransactionRecord] = []
        seen: set[tuple[Any, Any]] = set()

        for text in texts:
            if len(records) >= self.fallback_cap:
                break
            if not 30 < len(text) < 500:
                continue

            date_match = _FREE_TEXT_DATE.search(text)
            amounts = _FREE_TEXT_AMOUNT.findall(text)
            if not date_match or not amounts:
                continue

            try:
                when = standardize_date(date_match.group(0))
                amount = abs(parse_amount(amounts[0]))
                balance = parse_amount(amounts[-1]) if len(amounts) > 1 else None
            except ValueError:
                continue

            if (when, amount) in seen:
                continue
            seen.add((when, amount))

            direction = (
                Direction.CREDIT
                if contains_any(text, ("crédito", "abono"))
                else Direction.DEBIT
            )
            records.append(
                TransactionRecord(
                    date=when,
                    description=" ".join(text.split())[:100],
                    amount=amount,
                    direction=direction,
                    balance=balance,
                )
            )

        logger.info("alternative_extraction_completed", count=len(records))
        return records

    async def extract_account_summary(self, surface: Any) -> AccountSummary:
        """Read balances and account data from the page text. Never raises."""
        try:
            summary = parse_account_summary(await surface.text())
        except Exception as e:
            logger.warning("account_summary_extraction_failed", error=str(e))
            return AccountSummary()

        logger.debug(
            "account_summary_extracted",
            has_balance=summary.current_balance is not None,
            has_account=summary.account_number is not None,
        )
        return summary

    async def open_movements(self, surface: Any) -> bool:
        """Go to the account movements page.

        Follows the quick-menu link when present, otherwise the direct URL.

        Returns:
            True if a navigation was issued.
        """
        link = await self.probes["movements_link"].first(surface)
        if link is not None:
            await surface.click(link)
            await self.probes["settle"].first(surface)
            logger.info("movements_opened_via_menu")
            return True

        url = self.portal.get("movements_url")
        if not url:
            return False

        await surface.navigate(url)
        await self.probes["settle"].first(surface)
        logger.info("movements_opened_via_url", url=url)
        return True

    async def select_period(self, surface: Any, period: str) -> str | None:
        """Select a consultation period on the movements page and consult it.

        Starts at ``period`` (a value or label from the ``periods`` setting)
        and widens through the later periods while the portal answers with
        its no-movements message. Periods the dropdown does not offer are
        skipped.

        Args:
            surface: PageSurface showing the movements page.
            period: e.g. "PeriodoMesAnterior" or "Mes Anterior".

        Returns:
            Value of the last period consulted, or None if the dropdown or
            the "Consultar" control never appeared.

        Raises:
            ScraperError: If the period is unknown.
        """
        consulted = None

        for entry in self._period_plan(period):
            dropdown = await self.probes["period_select"].first(surface)
            if dropdown is None:
                logger.warning("period_dropdown_not_found")
                return consulted

            option = _match_option(await surface.options_of(dropdown), entry)
            if option is None:
                logger.info("period_not_offered", period=entry["value"])
                continue

            await surface.select_option(dropdown, option["value"])
            await surface.pause(self.settle_pause_ms)

            consult = await self.probes["consult"].first(surface)
            if consult is None:
                logger.warning("consult_control_not_found")
                return consulted

            await surface.click(consult)
            await self.probes["settle"].first(surface)
            await surface.pause(self.settle_pause_ms)
            consulted = option["value"]

            if not contains_any(await surface.text(), self.no_movements):
                logger.info("period_selected", period=consulted)
                return consulted
            logger.info("period_without_movements", period=consulted)

        return consulted

    def _period_plan(self, period: str) -> list[dict[str, str]]:
        wanted = fold(period)
        for index, entry in enumerate(self.periods):
            if wanted in (fold(entry["value"]), fold(entry["label"])):
                return self.periods[index:]

        known = ", ".join(entry["value"] for entry in self.periods)
        raise ScraperError(f"Unknown period {period!r}; expected one of: {known}")


def _match_option(options: list[dict[str, str]], entry: dict[str, str]) -> dict[str, str] | None:
    label = fold(entry["label"])
    for option in options:
        if option.get("value") == entry["value"] or label in fold(option.get("text")):
            return option
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
