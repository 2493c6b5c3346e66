"""
Billing period arithmetic and the human-readable period annotation.

Both functions are pure: the ORM hook in models/subscription.py calls
describe_period on every write that touches the period columns.
"""
from datetime import datetime, timedelta, timezone
from typing import Tuple

from dateutil.relativedelta import relativedelta

from loyalty_subscription_svc.errors import UnknownPlanError
from loyalty_subscription_svc.plans import ANNUAL, MONTHLY, SEMIANNUAL, TRIAL

TRIAL_LENGTH = timedelta(days=30)

# relativedelta clamps to the last day of the target month (Jan 31 + 1 month -> Feb 28/29)
_PLAN_OFFSETS = {
    TRIAL: TRIAL_LENGTH,
    MONTHLY: relativedelta(months=1),
    SEMIANNUAL: relativedelta(months=6),
    ANNUAL: relativedelta(years=1),
}

PERIOD_DATE_FORMAT = '%b %d, %Y'


def compute_period_end(plan: str, start: datetime) -> datetime:
    """
    Compute the end of a billing period starting at ``start`` for ``plan``.

    :param plan: Plan identifier from the catalog.
    :param start: Period start.
    :return: Period end, strictly after ``start``.
    :raises UnknownPlanError: if ``plan`` is not in the catalog.
    """
    try:
        offset = _PLAN_OFFSETS[plan]
    except (KeyError, TypeError):
        raise UnknownPlanError(plan) from None
    return start + offset


def _format_date(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(PERIOD_DATE_FORMAT)


def describe_period(plan: str, start: datetime, end: datetime) -> Tuple[str, bool]:
    """
    Build the period text and decide whether its duration class matches the plan.

    The duration classes are deliberately coarse; a mismatch flags provider-side
    drift (e.g. a monthly plan whose provider period is 45 days).
    """
    days = (end - start).days
    if days >= 350:
        suffix = '(1 year)'
        accurate = plan == ANNUAL
    elif days >= 150:
        suffix = '(6 months)'
        accurate = plan == SEMIANNUAL
    elif days >= 25:
        suffix = '(1 month)'
        accurate = plan in (MONTHLY, TRIAL)
    else:
        suffix = f'({days} days)'
        accurate = False
    text = f'{_format_date(start)} – {_format_date(end)} {suffix}'
    return text, accurate
