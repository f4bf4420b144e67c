"""
ROI Calculator

Point-in-time return estimate using simple interest since approval:

    elapsed_years  = hours(now - approval_date) / (24 * days_per_year)
    total_interest = principal * (rate / 100) * elapsed_years
    roi_percent    = total_interest / principal * 100

A fixed-length year is used; leap years, compounding and repayments are
not accounted for.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from .errors import PreconditionError

if TYPE_CHECKING:
    from .loans import Loan


HOURS_PER_DAY = Decimal('24')
SECONDS_PER_HOUR = Decimal('3600')


def elapsed_years(start: datetime, end: datetime, days_per_year: int = 365) -> Decimal:
    """Fractional years between two aware datetimes"""
    hours = Decimal(str((end - start).total_seconds())) / SECONDS_PER_HOUR
    return hours / (HOURS_PER_DAY * Decimal(days_per_year))


def compute_roi(
    loan: 'Loan',
    now: Optional[datetime] = None,
    precision: int = 4,
    days_per_year: int = 365
) -> Decimal:
    """
    Compute the simple-interest ROI percentage for an approved loan

    Args:
        loan: Loan with an approval date
        now: Valuation time (defaults to current UTC time)
        precision: Decimal places in the result
        days_per_year: Year length used to annualize elapsed time

    Returns:
        ROI as a percentage, e.g. Decimal('5.5000') for one year at 5.5%
    """
    if loan.approval_date is None:
        raise PreconditionError(f"Loan {loan.id} has not been approved; ROI is undefined")
    if loan.principal == 0:
        raise PreconditionError(f"Loan {loan.id} has zero principal; ROI is undefined")

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if now < loan.approval_date:
        raise PreconditionError(f"Loan {loan.id} approval date is in the future")

    years = elapsed_years(loan.approval_date, now, days_per_year)
    total_interest = loan.principal * (loan.rate / Decimal('100')) * years
    roi = (total_interest / loan.principal) * Decimal('100')

    quantum = Decimal('1').scaleb(-precision)
    return roi.quantize(quantum, rounding=ROUND_HALF_UP)
