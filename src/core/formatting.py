"""
Soot Assistant — French presentation helpers.

Tool results carry pre-formatted dates and amounts so the model can confirm
an action without another query.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from src.core.errors import ToolValidationError

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_RE = re.compile(r"^\d{4}-\d{2}$")

_MONTHS = (
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
)
_WEEKDAYS = ("lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche")

# fr-FR groups thousands with a narrow no-break space and puts a
# no-break space before the currency sign.
_GROUP_SEP = "\u202f"
_CURRENCY_SEP = "\u00a0"


def parse_iso_date(value: str) -> date:
    """Parse YYYY-MM-DD, raising ToolValidationError with a French message."""
    if not DATE_RE.match(value or ""):
        raise ToolValidationError("Format de date attendu: YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ToolValidationError(f"Date invalide: {value}") from None


def parse_month(value: str) -> str:
    """Validate a YYYY-MM month key and return it unchanged."""
    if not MONTH_RE.match(value or ""):
        raise ToolValidationError("Format de mois attendu: YYYY-MM")
    month = int(value[5:7])
    if not 1 <= month <= 12:
        raise ToolValidationError(f"Mois invalide: {value}")
    return value


def format_date(value: str | date | None) -> str:
    """'2025-04-01' -> '1 avril 2025'; None -> 'sans date'."""
    if value is None or value == "":
        return "sans date"
    d = value if isinstance(value, date) else date.fromisoformat(value)
    return f"{d.day} {_MONTHS[d.month - 1]} {d.year}"


def format_month(month_key: str) -> str:
    """'2025-04' -> 'avril 2025'."""
    year, month = month_key.split("-")
    return f"{_MONTHS[int(month) - 1]} {year}"


def format_human_today(today: date) -> str:
    """Full French date, e.g. 'mardi 1 avril 2025'."""
    return f"{_WEEKDAYS[today.weekday()]} {format_date(today)}"


def format_euro(amount_cents: int) -> str:
    """12550 -> '125,50 €' using fr-FR separators."""
    sign = "-" if amount_cents < 0 else ""
    units, cents = divmod(abs(amount_cents), 100)
    grouped = f"{units:,}".replace(",", _GROUP_SEP)
    return f"{sign}{grouped},{cents:02d}{_CURRENCY_SEP}€"


def euros_to_cents(amount: float) -> int:
    """Convert a euro amount to integer cents, rounding half up."""
    cents = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)
