"""KPI engine - pure aggregation of canonical records over trailing windows"""

import logging
from collections import Counter
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Context, Decimal, localcontext
from typing import List, Optional, Sequence, Tuple, TypeVar

from revenue_attestor.config import settings
from revenue_attestor.domain.exceptions import InvalidKPIInputError
from revenue_attestor.domain.models import (
    NON_REVENUE_STATUSES,
    KPIResult,
    NormalizedCustomer,
    NormalizedOrder,
    NormalizedRefund,
)
from revenue_attestor.domain.money import from_minor_units
from revenue_attestor.utils.date_utils import (
    parse_timestamp,
    resolve_timezone,
    subtract_calendar_days,
    to_iso_z,
)

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
HUNDRED = Decimal(100)

# Pinned so results never depend on a caller's ambient decimal context
DECIMAL_CONTEXT = Context(prec=28, rounding=ROUND_HALF_EVEN)

T = TypeVar("T")


def _ratio(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    """Division that resolves to zero instead of raising on an empty denominator"""
    if not denominator:
        return ZERO
    return Decimal(numerator) / Decimal(denominator)


def _with_timestamps(records: Sequence[T], kind: str) -> List[Tuple[datetime, T]]:
    """Pair records with parsed timestamps; malformed ones are dropped with a warning"""
    dated: List[Tuple[datetime, T]] = []
    for record in records:
        try:
            dated.append((parse_timestamp(record.created_at), record))
        except ValueError as e:
            logger.warning(
                "Excluding %s with malformed timestamp",
                kind,
                extra={"record_id": record.id, "created_at": record.created_at, "error": str(e)},
            )
    return dated


def _in_range(moment: datetime, start: datetime, end: datetime, include_end: bool) -> bool:
    if include_end:
        return start <= moment <= end
    return start <= moment < end


def _sales_totals(
    orders: List[NormalizedOrder], refunds: List[NormalizedRefund]
) -> Tuple[int, int, int]:
    """Gross, discounts and refunds in minor units"""
    gross = sum(o.subtotal_cents for o in orders)
    discounts = sum(o.discount_cents for o in orders)
    refunded = sum(r.amount_cents for r in refunds)
    return gross, discounts, refunded


def compute_kpis(
    orders: Sequence[NormalizedOrder],
    refunds: Sequence[NormalizedRefund],
    customers: Optional[Sequence[NormalizedCustomer]] = None,
    timezone: str | None = None,
    window_days: int | None = None,
    prior_window_days: int | None = None,
    now: datetime | None = None,
    chargebacks: int | None = None,
) -> KPIResult:
    """
    Compute KPIs for the trailing window ending at `now`.

    Definitions:
    - Net sales = Gross - Discounts - Refunds (excludes taxes/shipping)
    - Orders count when window_start <= created_at <= now and the status is
      revenue-bearing (not voided/failed)
    - Refunds count by their own timestamp, independent of their order
    - Growth compares against [window_start - prior_window_days, window_start)

    Passing `now` makes the result a pure function of the arguments.

    Raises:
        InvalidKPIInputError: On an unknown timezone or non-positive window
    """
    timezone = timezone or settings.default_timezone
    window_days = settings.default_window_days if window_days is None else window_days

    if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days <= 0:
        raise InvalidKPIInputError(f"window_days must be a positive integer, got {window_days!r}")
    if prior_window_days is not None and (
        isinstance(prior_window_days, bool) or not isinstance(prior_window_days, int) or prior_window_days <= 0
    ):
        raise InvalidKPIInputError(f"prior_window_days must be a positive integer, got {prior_window_days!r}")

    try:
        tz = resolve_timezone(timezone)
    except ValueError as e:
        raise InvalidKPIInputError(str(e)) from e

    now = datetime.now(tz) if now is None else parse_timestamp(now).astimezone(tz)
    window_start = subtract_calendar_days(now, window_days)

    dated_orders = [
        (ts, o) for ts, o in _with_timestamps(orders, "order") if o.financial_status not in NON_REVENUE_STATUSES
    ]
    dated_refunds = _with_timestamps(refunds, "refund")

    orders_in_window = [o for ts, o in dated_orders if _in_range(ts, window_start, now, include_end=True)]

    # Currency of the first in-window order; minor units of other currencies cannot be summed
    currency = orders_in_window[0].currency if orders_in_window else settings.default_currency

    def same_currency(record) -> bool:
        if record.currency == currency:
            return True
        logger.warning(
            "Excluding record in foreign currency",
            extra={"record_id": record.id, "currency": record.currency, "kpi_currency": currency},
        )
        return False

    orders_in_window = [o for o in orders_in_window if same_currency(o)]
    refunds_in_window = [
        r for ts, r in dated_refunds if _in_range(ts, window_start, now, include_end=True) and same_currency(r)
    ]

    gross_cents, discount_cents, refund_cents = _sales_totals(orders_in_window, refunds_in_window)
    net_cents = gross_cents - discount_cents - refund_cents

    orders_count = len(orders_in_window)
    items_sold = sum(o.line_items_count for o in orders_in_window)

    new_customers = 0
    returning_customer_rate = ZERO
    repeat_purchase_rate = ZERO

    with localcontext(DECIMAL_CONTEXT):
        gross_sales = from_minor_units(gross_cents, currency)
        discounts = from_minor_units(discount_cents, currency)
        refunds_amount = from_minor_units(refund_cents, currency)
        net_sales = from_minor_units(net_cents, currency)

        aov = _ratio(net_sales, orders_count)

        if customers:
            new_customers = sum(
                1 for ts, _ in _with_timestamps(customers, "customer") if _in_range(ts, window_start, now, True)
            )

            customers_by_id = {c.id: c for c in customers}
            returning_orders = sum(
                1
                for o in orders_in_window
                if o.customer_id
                and o.customer_id in customers_by_id
                and customers_by_id[o.customer_id].orders_count > 1
            )
            returning_customer_rate = _ratio(returning_orders, orders_count)

            orders_per_customer = Counter(o.customer_id for o in orders_in_window if o.customer_id)
            repeat_customers = sum(1 for count in orders_per_customer.values() if count > 1)
            repeat_purchase_rate = _ratio(repeat_customers, len(orders_per_customer))

        orders_with_discount = sum(1 for o in orders_in_window if o.discount_cents > 0)
        discount_penetration = _ratio(orders_with_discount, orders_count)
        discount_rate = _ratio(discount_cents, gross_cents) if gross_cents > 0 else ZERO

        growth_t30 = None
        if prior_window_days:
            prior_start = subtract_calendar_days(window_start, prior_window_days)
            prior_orders = [
                o
                for ts, o in dated_orders
                if _in_range(ts, prior_start, window_start, include_end=False) and o.currency == currency
            ]
            prior_refunds = [
                r
                for ts, r in dated_refunds
                if _in_range(ts, prior_start, window_start, include_end=False) and r.currency == currency
            ]
            prior_gross, prior_discounts, prior_refunded = _sales_totals(prior_orders, prior_refunds)
            prior_net_cents = prior_gross - prior_discounts - prior_refunded

            growth_t30 = (
                _ratio(net_cents - prior_net_cents, prior_net_cents) * HUNDRED if prior_net_cents > 0 else ZERO
            )

    return KPIResult(
        gross_sales=gross_sales,
        discounts=discounts,
        refunds=refunds_amount,
        net_sales=net_sales,
        orders_count=orders_count,
        items_sold=items_sold,
        aov=aov,
        new_customers=new_customers,
        returning_customer_rate=returning_customer_rate,
        repeat_purchase_rate=repeat_purchase_rate,
        discount_penetration=discount_penetration,
        discount_rate=discount_rate,
        currency=currency,
        window_start=to_iso_z(window_start),
        window_end=to_iso_z(now),
        timezone=timezone,
        data_freshness=to_iso_z(now),
        growth_t30=growth_t30,
        chargebacks=chargebacks,
    )
