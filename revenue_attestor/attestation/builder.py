"""Build canonical attestations from KPI results"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError

from revenue_attestor.attestation.schema import (
    AttestationMerchant,
    AttestationMetrics,
    AttestationPeriod,
    AttestationV1,
)
from revenue_attestor.domain.exceptions import AttestationValidationError
from revenue_attestor.domain.models import KPIResult
from revenue_attestor.domain.money import to_decimal
from revenue_attestor.utils.date_utils import epoch_millis, to_iso_z

CURRENCY_DECIMALS = 2
RATE_DECIMALS = 4


def format_fixed(value: Any, decimals: int) -> str:
    """
    Render a number as a fixed-point string with exactly `decimals` digits.

    Rounds half-up and never emits "-0.00".

    Raises:
        AttestationValidationError: On non-numeric, non-finite or out-of-range input
    """
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise AttestationValidationError(str(e)) from e

    try:
        quantized = amount.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise AttestationValidationError(f"Value out of range for {decimals} decimals: {value!r}") from e
    if quantized.is_zero():
        quantized = abs(quantized)
    return format(quantized, "f")


def build_attestation(
    kpis: KPIResult,
    merchant_id: str,
    previous_cid: str | None = None,
    platform_id: str | None = None,
    built_at: datetime | None = None,
) -> AttestationV1:
    """
    Build canonical attestation from KPI data.

    Every currency metric becomes a 2-decimal string and every rate a
    4-decimal string, so no binary float ever reaches the hashed document.

    Raises:
        AttestationValidationError: If a KPI value cannot be rendered
    """
    built_at = built_at or datetime.now(timezone.utc)
    if built_at.tzinfo is None:
        built_at = built_at.replace(tzinfo=timezone.utc)

    try:
        return AttestationV1(
            period=AttestationPeriod(
                start=kpis.window_start,
                end=kpis.window_end,
                timezone=kpis.timezone,
            ),
            merchant=AttestationMerchant(
                merchant_id=merchant_id,
                currency=kpis.currency,
                platform_id=platform_id,
            ),
            metrics=AttestationMetrics(
                gross_sales=format_fixed(kpis.gross_sales, CURRENCY_DECIMALS),
                discounts=format_fixed(kpis.discounts, CURRENCY_DECIMALS),
                refunds=format_fixed(kpis.refunds, CURRENCY_DECIMALS),
                net_sales=format_fixed(kpis.net_sales, CURRENCY_DECIMALS),
                orders_count=kpis.orders_count,
                items_sold=kpis.items_sold,
                aov=format_fixed(kpis.aov, CURRENCY_DECIMALS),
                new_customers=kpis.new_customers,
                returning_customer_rate=format_fixed(kpis.returning_customer_rate, RATE_DECIMALS),
                repeat_purchase_rate=format_fixed(kpis.repeat_purchase_rate, RATE_DECIMALS),
                discount_penetration=format_fixed(kpis.discount_penetration, RATE_DECIMALS),
                discount_rate=format_fixed(kpis.discount_rate, RATE_DECIMALS),
                growth_t30=(
                    format_fixed(kpis.growth_t30, RATE_DECIMALS) if kpis.growth_t30 is not None else None
                ),
                chargebacks=kpis.chargebacks,
            ),
            nonce=str(epoch_millis(built_at)),
            timestamp=to_iso_z(built_at),
            previous_cid=previous_cid,
        )
    except ValidationError as e:
        raise AttestationValidationError(f"Invalid attestation content: {e}") from e
