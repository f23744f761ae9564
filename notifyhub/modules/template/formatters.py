"""Value formatters applied with the ``{{path|formatter:arg}}`` syntax.

Formatters never raise: a value that cannot be parsed for a numeric or date
formatter is returned unchanged.
"""

import logging
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from babel import Locale, UnknownLocaleError
from babel.dates import format_skeleton
from babel.numbers import format_currency

logger = logging.getLogger(__name__)

DEFAULT_TRUNCATE_LENGTH = 50
DEFAULT_DATE_LOCALE = "en-IN"
DEFAULT_CURRENCY = "INR"
DEFAULT_CURRENCY_LOCALE = "en-IN"
MAX_NUMBER_EXPONENT = 30

_TITLE_WORD = re.compile(r"\w\S*")
_ARG_SEPARATOR = re.compile(r"[:,]")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_locale(identifier: str) -> Optional[Locale]:
    try:
        return Locale.parse(identifier.strip().replace("-", "_"))
    except (UnknownLocaleError, ValueError, TypeError):
        return None


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Numeric timestamps are epoch milliseconds
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            return None
    return None


def _parse_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    # Reject non-finite values and exponents no real amount uses
    if not number.is_finite() or abs(number.adjusted()) > MAX_NUMBER_EXPONENT:
        return None
    return number


def format_upper(value: Any, args: list[str], raw: str) -> Any:
    return _as_text(value).upper()


def format_lower(value: Any, args: list[str], raw: str) -> Any:
    return _as_text(value).lower()


def format_title(value: Any, args: list[str], raw: str) -> Any:
    return _TITLE_WORD.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), _as_text(value))


def format_truncate(value: Any, args: list[str], raw: str) -> Any:
    length = DEFAULT_TRUNCATE_LENGTH
    if args and args[0].strip():
        try:
            length = int(args[0].strip())
        except ValueError:
            return value
    if length < 0:
        return value
    text = _as_text(value)
    return text[:length] + "..." if len(text) > length else text


def format_date_value(value: Any, args: list[str], raw: str) -> Any:
    parsed = _parse_date(value)
    if parsed is None:
        return value
    locale = _parse_locale(args[0] if args and args[0].strip() else DEFAULT_DATE_LOCALE)
    if locale is None:
        return value
    # Numeric day, month and full year in the locale's order
    return format_skeleton("yMd", datetime.combine(parsed, time()), locale=locale)


def format_currency_value(value: Any, args: list[str], raw: str) -> Any:
    number = _parse_number(value)
    if number is None:
        return value
    currency = args[0].strip().upper() if args and args[0].strip() else DEFAULT_CURRENCY
    locale = _parse_locale(args[1] if len(args) > 1 and args[1].strip() else DEFAULT_CURRENCY_LOCALE)
    if locale is None:
        return value
    try:
        return format_currency(number, currency, locale=locale)
    except (ValueError, KeyError) as exc:
        logger.debug("Currency formatting failed for %s: %s", currency, exc)
        return value


def format_default(value: Any, args: list[str], raw: str) -> Any:
    return value if value else raw


FORMATTERS: dict[str, Callable[[Any, list[str], str], Any]] = {
    "upper": format_upper,
    "lower": format_lower,
    "title": format_title,
    "truncate": format_truncate,
    "date": format_date_value,
    "currency": format_currency_value,
    "default": format_default,
}


def apply_formatter(value: Any, spec: str) -> Any:
    """Apply one ``name[:arg[,arg...]]`` formatter to a value.

    Unknown formatter names leave the value untouched.
    """
    name, _, raw = spec.strip().partition(":")
    formatter = FORMATTERS.get(name.strip())
    if formatter is None:
        return value
    args = _ARG_SEPARATOR.split(raw) if raw else []
    return formatter(value, args, raw)


def apply_formatters(value: Any, specs: list[str]) -> Any:
    """Apply a formatter chain left to right."""
    for spec in specs:
        value = apply_formatter(value, spec)
    return value
