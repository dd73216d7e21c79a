"""Text normalization and value parsing for Banesco pages.

All helpers here are pure functions so the extraction engine and the
security question resolver share one definition of "the same text".
"""

import re
import unicodedata
from datetime import date
from decimal import Decimal, InvalidOperation

from banesco_scraper.models import Direction

_WHITESPACE = re.compile(r"\s+")
_AMOUNT_CHARS = re.compile(r"[^\d,.\-+]")
_DATE = re.compile(r"^\s*(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4}|\d{2})\b")

CREDIT_MARKERS = ("c", "crédito", "credito", "credit", "+")


def strip_accents(text: str) -> str:
    """Remove combining diacritics (NFD decomposition)."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold(text: str | None) -> str:
    """Case-fold, strip accents and collapse whitespace.

    Punctuation is kept, so header tokens such as ``D/C`` stay intact.
    """
    if not text:
        return ""
    return _WHITESPACE.sub(" ", strip_accents(text.casefold())).strip()


def normalize_text(text: str | None) -> str:
    """Normalize text for keyword matching.

    Case-folds, strips diacritics, turns every Unicode punctuation or symbol
    character (``¿``, ``/``, ``+``, ``$``...) into a space and collapses
    whitespace. Total and deterministic: any string, including ``None``,
    maps to a string.

    Examples:
        >>> normalize_text("¿Cuál es el nombre de su MASCOTA?")
        'cual es el nombre de su mascota'
        >>> normalize_text("Nombre/madre")
        'nombre madre'
    """
    folded = fold(text)
    spaced = "".join(
        " " if unicodedata.category(ch)[0] in ("P", "S") else ch for ch in folded
    )
    return _WHITESPACE.sub(" ", spaced).strip()


def contains_any(text: str | None, markers: list[str] | tuple[str, ...]) -> bool:
    """Return True if any marker occurs in text (accent and case insensitive)."""
    haystack = fold(text)
    return any(fold(marker) in haystack for marker in markers if marker)


def parse_security_config(config: str | None) -> dict[str, str]:
    """Parse ``keyword:answer`` pairs separated by commas.

    Pairs are split on the first colon so answers may contain colons.
    Pairs missing a keyword or an answer are dropped. Order is preserved.

    Examples:
        >>> parse_security_config("mascota:firulais, madre:maria")
        {'mascota': 'firulais', 'madre': 'maria'}
    """
    pairs: dict[str, str] = {}
    for chunk in (config or "").split(","):
        keyword, sep, answer = chunk.partition(":")
        keyword, answer = keyword.strip(), answer.strip()
        if not sep or not keyword or not answer:
            continue
        pairs.setdefault(keyword, answer)
    return pairs


def parse_amount(text: str) -> Decimal:
    """Parse a Banesco amount string into a Decimal.

    The Venezuelan format (dot thousands, comma decimals) is primary; the
    US format (comma thousands, dot decimals) is accepted as secondary.
    The sign is preserved; callers take the absolute value.

    Args:
        text: Raw cell text such as "Bs. 1.234.567,89" or "-150,00".

    Returns:
        Parsed amount.

    Raises:
        ValueError: If the text holds no digits.

    Examples:
        >>> parse_amount("1.234.567,89")
        Decimal('1234567.89')
        >>> parse_amount("1,234.50")
        Decimal('1234.50')
    """
    cleaned = _AMOUNT_CHARS.sub("", text or "")
    if not re.search(r"\d", cleaned):
        raise ValueError(f"No amount in {text!r}")

    negative = cleaned.startswith("-") or cleaned.endswith("-")
    # Leading separators come from currency prefixes such as "Bs."
    cleaned = cleaned.replace("-", "").replace("+", "").strip(".,")

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")

    if last_comma != -1 and last_dot != -1:
        if last_comma > last_dot:
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif last_comma != -1:
        if cleaned.count(",") > 1:
            cleaned = cleaned.replace(",", "")
        else:
            cleaned = cleaned.replace(",", ".")
    elif last_dot != -1:
        # "1.234" and "1.234.567" are thousands groups in the primary locale
        if cleaned.count(".") > 1 or len(cleaned) - last_dot - 1 == 3:
            cleaned = cleaned.replace(".", "")

    try:
        value = Decimal(cleaned)
    except InvalidOperation as e:
        raise ValueError(f"Unparseable amount {text!r}") from e

    return -value if negative else value


def standardize_date(text: str) -> date:
    """Parse DD/MM/YYYY (or dashed/dotted, 2-digit year) into a date.

    The date must open the text and the year must have two or four digits,
    so ISO dates and truncated years are rejected rather than misread.

    Raises:
        ValueError: If no valid day-first date is present.
    """
    match = _DATE.search(text or "")
    if not match:
        raise ValueError(f"No date in {text!r}")

    day, month, year = (int(part) for part in match.groups())
    if year < 100:
        year += 2000
    return date(year, month, day)


def infer_direction(marker: str | None) -> Direction:
    """Infer debit/credit from a marker cell.

    Credit when the marker contains "c", "crédito", "credit" or "+".
    Everything else, including an empty marker, is a debit.
    """
    folded = fold(marker)
    if folded and any(fold(token) in folded for token in CREDIT_MARKERS):
        return Direction.CREDIT
    return Direction.DEBIT
