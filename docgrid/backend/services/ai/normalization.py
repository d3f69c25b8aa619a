"""
Normalization of extracted values by column type.

Dates become ISO `YYYY-MM-DD`; prices become a plain two-decimal amount
prefixed by the detected currency. Values that cannot be parsed are kept
exactly as extracted.
"""

import logging
import re
from datetime import datetime

from dateutil import parser as date_parser
from price_parser import Price

from ...models import ColumnType

logger = logging.getLogger(__name__)


def parse_date(value: str | None) -> str | None:
    """
    Parse various date formats to YYYY-MM-DD.

    Returns None if parsing fails.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    # ISO date, possibly embedded in a longer string
    match = re.search(r"\b(\d{4})-(\d{2})-(\d{2})\b", value)
    if match:
        year, month, day = (int(g) for g in match.groups())
        try:
            return datetime(year, month, day).strftime("%Y-%m-%d")
        except ValueError:
            return None

    # US format (MM/DD/YYYY)
    match = re.match(r"^(\d{1,2})/(\d{1,2})/(\d{4})$", value)
    if match:
        month, day, year = (int(g) for g in match.groups())
        try:
            return datetime(year, month, day).strftime("%Y-%m-%d")
        except ValueError:
            # European format (DD/MM/YYYY) when the month slot cannot be a month
            try:
                return datetime(year, day, month).strftime("%Y-%m-%d")
            except ValueError:
                return None

    # Written formats
    try:
        dt = date_parser.parse(value)
        return dt.strftime("%Y-%m-%d")
    except (ValueError, OverflowError, TypeError):
        return None


def parse_price(value: str | None) -> str | None:
    """
    Parse a currency string using price-parser.

    Handles "$1,234.56", "€1.234,56", "1000 USD" and similar.

    Returns:
        "<currency><amount>" with two decimals, or None when no amount is found.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    price = Price.fromstring(value)
    if price.amount is None:
        return None
    amount = f"{price.amount:.2f}"
    return f"{price.currency}{amount}" if price.currency else amount


def normalize_value(value: str, column_type: ColumnType | None) -> str:
    """Normalize `value` for `column_type`, keeping it unchanged on failure."""
    if not value:
        return value

    if column_type == ColumnType.DATE:
        normalized = parse_date(value)
    elif column_type == ColumnType.PRICE:
        normalized = parse_price(value)
    else:
        return value

    if normalized is None:
        logger.debug("Could not normalize %s value %r; keeping raw", column_type.value, value)
        return value
    return normalized
