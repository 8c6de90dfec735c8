"""Locale-aware formatting of amounts and dates.

Uses babel; the locale comes from the LOCALE setting (default: es_MX) and the
currency is derived from the locale territory (MXN for es_MX).

Example:
    >>> format_amount(Decimal("1234.5"))
    '$1,234.50'
"""

import logging
from datetime import date
from decimal import Decimal
from functools import lru_cache

from babel import Locale, UnknownLocaleError
from babel.dates import format_date as babel_format_date
from babel.numbers import format_currency as babel_format_currency
from babel.numbers import format_decimal as babel_format_decimal
from babel.numbers import get_territory_currencies

from hoa_ledger.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "es_MX"
DEFAULT_CURRENCY = "MXN"


@lru_cache(maxsize=1)
def get_locale() -> str:
    """Get the configured locale, falling back to es_MX when babel does not know it."""
    locale_str = get_settings().locale
    try:
        Locale.parse(locale_str)
        return locale_str
    except (UnknownLocaleError, ValueError) as e:
        logger.warning("Invalid LOCALE '%s': %s. Falling back to '%s'", locale_str, e, DEFAULT_LOCALE)
        return DEFAULT_LOCALE


@lru_cache(maxsize=1)
def get_currency_code() -> str:
    """Derive ISO 4217 currency code from the locale territory."""
    try:
        territory = Locale.parse(get_locale()).territory
        if territory:
            currencies = get_territory_currencies(territory)
            if currencies:
                return currencies[0]
    except (UnknownLocaleError, ValueError) as e:
        logger.warning("Could not derive currency from locale: %s", e)
    return DEFAULT_CURRENCY


def format_amount(amount: Decimal | float, include_symbol: bool = True) -> str:
    """Format monetary amount according to locale (e.g. '$1,234.50')."""
    if include_symbol:
        return babel_format_currency(Decimal(str(amount)), get_currency_code(), locale=get_locale())
    return babel_format_decimal(Decimal(str(amount)), format="#,##0.00", locale=get_locale())


def format_day(day: date, format: str = "medium") -> str:
    """Format a date according to locale (e.g. '31 ene 2024')."""
    return babel_format_date(day, format=format, locale=get_locale())


__all__ = ["get_locale", "get_currency_code", "format_amount", "format_day"]
