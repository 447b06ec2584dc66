"""Due-date arithmetic for recurring expense templates"""

from datetime import datetime, timedelta
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from ledger_core.domain.exceptions import InvalidFrequencyError
from ledger_core.domain.models import Frequency


def parse_frequency(value: Union[Frequency, str, None]) -> Frequency:
    """Coerce a stored frequency string into the enum, failing loudly"""
    try:
        return Frequency(value)
    except ValueError as e:
        raise InvalidFrequencyError(f"Unknown frequency: {value}") from e


def next_due_date(current: datetime, frequency: Union[Frequency, str]) -> datetime:
    """
    Advance a due date by one period.

    Month and year steps clamp to the last valid day of the target month:
        Jan 31 + 1 month → Feb 28 (Feb 29 in leap years)
        Mar 31 + 1 month → Apr 30
        Feb 29 2024 + 1 year → Feb 28 2025

    Raises:
        InvalidFrequencyError: frequency is not daily/weekly/monthly/yearly.
            This signals corrupt data and is never silently defaulted.
    """
    frequency = parse_frequency(frequency)

    if frequency == Frequency.DAILY:
        return current + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return current + timedelta(days=7)
    if frequency == Frequency.MONTHLY:
        return current + relativedelta(months=1)
    return current + relativedelta(years=1)


def has_ended(end_date: Optional[datetime], now: datetime) -> bool:
    """True once a template's end date lies strictly in the past"""
    return end_date is not None and end_date < now
