"""Installment plan generation: amount splitting and due-date scheduling"""

from datetime import date
from typing import List, Optional

from dues_gateway.domain.exceptions import ValidationError
from dues_gateway.domain.models import Installment
from dues_gateway.utils.date_utils import add_days, days_between


def split_amount(total_cents: int, num_installments: int) -> List[int]:
    """
    Split a balance into installment amounts that sum exactly to the total.

    Requirements:
    - Result has num_installments entries, all non-negative
    - First installment absorbs the rounding remainder, so it is never smaller
      than any other installment

    Example:
        $100.00 in 3 → [$33.34, $33.33, $33.33]
        10000 cents // 3 = 3333 base, remainder 1
        First installment: 3333 + 1 = 3334
    """
    if num_installments < 1:
        raise ValidationError("num_installments must be at least 1")
    if total_cents < 0:
        raise ValidationError("Total amount cannot be negative")

    base_amount = total_cents // num_installments
    remainder = total_cents - base_amount * num_installments

    return [base_amount + remainder] + [base_amount] * (num_installments - 1)


def generate_schedule(
    start_date: date,
    num_installments: int,
    deadline: Optional[date] = None,
    interval_days: int = 30,
) -> List[date]:
    """
    Generate installment due dates.

    Without a deadline, payments fall every interval_days calendar days from
    start_date. With a deadline, payments are spread evenly from start_date to
    the deadline and the last one lands exactly on it.

    Args:
        start_date: First due date (typically today)
        num_installments: Number of payments
        deadline: Final due date, usually the dues due date
        interval_days: Fixed cadence used when there is no deadline

    Returns:
        num_installments non-decreasing dates
    """
    if num_installments < 1:
        raise ValidationError("num_installments must be at least 1")

    if deadline is None:
        return [add_days(start_date, i * interval_days) for i in range(num_installments)]

    total_days = days_between(start_date, deadline)
    if total_days < 0:
        raise ValidationError(f"Deadline {deadline.isoformat()} is before start {start_date.isoformat()}")

    if num_installments == 1:
        return [deadline]

    gaps = num_installments - 1
    dates = []
    for i in range(gaps):
        # round(i * total_days / gaps) with halves rounded up, in integers
        offset = (2 * i * total_days + gaps) // (2 * gaps)
        dates.append(add_days(start_date, offset))
    dates.append(deadline)

    return dates


def generate_installment_plan(
    total_cents: int,
    num_installments: int,
    start_date: date,
    deadline: Optional[date] = None,
    interval_days: int = 30,
) -> List[Installment]:
    """Pair split amounts with scheduled dates, numbered from 1"""
    amounts = split_amount(total_cents, num_installments)
    dates = generate_schedule(start_date, num_installments, deadline, interval_days)

    return [
        Installment(installment_number=i + 1, scheduled_date=due, amount_cents=amount)
        for i, (amount, due) in enumerate(zip(amounts, dates))
    ]
