"""Calendar arithmetic for recurring charges."""

from datetime import date

from dateutil.relativedelta import relativedelta

from hoa_ledger.models.charge_template import RecurrencePeriod

_PERIOD_STEPS: dict[RecurrencePeriod, relativedelta] = {
    RecurrencePeriod.WEEKLY: relativedelta(days=7),
    RecurrencePeriod.BIWEEKLY: relativedelta(days=15),
    RecurrencePeriod.MONTHLY: relativedelta(months=1),
    RecurrencePeriod.BIMONTHLY: relativedelta(months=2),
    RecurrencePeriod.QUARTERLY: relativedelta(months=3),
    RecurrencePeriod.SEMIANNUAL: relativedelta(months=6),
    RecurrencePeriod.ANNUAL: relativedelta(years=1),
}


def add_periods(anchor: date, period: RecurrencePeriod, count: int) -> date:
    """Return the date `count` periods after `anchor`.

    Always computed from the anchor so month-end dates do not drift:
    Jan 31 + 1 month = Feb 29 (leap year), Jan 31 + 2 months = Mar 31.
    """
    if count < 0:
        raise ValueError("count must be non-negative")
    return anchor + _PERIOD_STEPS[RecurrencePeriod(period)] * count


def cycle_due_date(anchor: date, period: RecurrencePeriod, cycle: int) -> date:
    """Due date of the given cycle; cycle 0 is the anchor itself."""
    return add_periods(anchor, period, cycle)


def generation_date_after(anchor: date, period: RecurrencePeriod, cycle: int) -> date:
    """Date on which the cycle following `cycle` must be generated.

    That is the due date of `cycle` itself, so every new cycle is issued one
    full period before it falls due.
    """
    return add_periods(anchor, period, cycle)


__all__ = ["add_periods", "cycle_due_date", "generation_date_after"]
