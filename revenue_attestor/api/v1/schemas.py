"""Pydantic schemas for API request/response validation"""

from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from revenue_attestor.config import settings
from revenue_attestor.domain.models import KPIResult
from revenue_attestor.services.attestation import ProviderFeed


class ProviderConnection(BaseModel):
    """Which provider to read and how to reach the merchant's account there"""

    provider: str = Field(..., min_length=1, description="stripe, shopify, woocommerce, square, paypal, plaid or toast")
    credential: str = Field(..., min_length=1, description="Access token (WooCommerce: consumer key)")
    shop: Optional[str] = Field(default=None, description="Shopify shop domain")
    store_url: Optional[str] = Field(default=None, description="WooCommerce store URL")
    consumer_secret: Optional[str] = Field(default=None, description="WooCommerce consumer secret")
    location_ids: List[str] = Field(default_factory=list, description="Square locations (all when empty)")
    restaurant_guid: Optional[str] = Field(default=None, description="Toast restaurant GUID")
    environment: Optional[Literal["sandbox", "production"]] = None


class KPIRequest(ProviderConnection):
    """Request body for POST /v1/kpis"""

    timezone: str = Field(default_factory=lambda: settings.default_timezone, description="IANA timezone")
    window_days: Literal[30, 90] = 30
    include_growth: bool = True


class AttestationRequest(KPIRequest):
    """Request body for POST /v1/attestations"""

    merchant_id: str = Field(..., min_length=1, description="Business wallet address")
    platform_id: Optional[str] = None
    previous_cid: Optional[str] = Field(default=None, description="Content address of the prior attestation")


class FeedSummary(BaseModel):
    """Fetch/normalization metadata for one provider"""

    provider: str
    records: int
    pages: int
    partial: bool
    partial_reason: Optional[str] = None
    skipped: int

    @classmethod
    def from_feed(cls, feed: ProviderFeed) -> "FeedSummary":
        return cls(
            provider=feed.provider,
            records=feed.records,
            pages=feed.pages,
            partial=feed.partial,
            partial_reason=feed.partial_reason,
            skipped=feed.report.skipped,
        )


def _plain(value: Optional[Decimal]) -> Optional[str]:
    # Fixed-point rendering; str(Decimal) may use exponent notation
    return None if value is None else format(value, "f")


class KPIResponse(BaseModel):
    """Response for POST /v1/kpis; decimal values are rendered as strings"""

    gross_sales: str
    discounts: str
    refunds: str
    net_sales: str
    orders_count: int
    items_sold: int
    aov: str
    new_customers: int
    returning_customer_rate: str
    repeat_purchase_rate: str
    discount_penetration: str
    discount_rate: str
    growth_t30: Optional[str] = None
    chargebacks: Optional[int] = None
    currency: str
    window_start: str
    window_end: str
    timezone: str
    data_freshness: str
    feeds: List[FeedSummary]

    @classmethod
    def from_result(cls, kpis: KPIResult, feeds: List[ProviderFeed]) -> "KPIResponse":
        return cls(
            gross_sales=_plain(kpis.gross_sales),
            discounts=_plain(kpis.discounts),
            refunds=_plain(kpis.refunds),
            net_sales=_plain(kpis.net_sales),
            orders_count=kpis.orders_count,
            items_sold=kpis.items_sold,
            aov=_plain(kpis.aov),
            new_customers=kpis.new_customers,
            returning_customer_rate=_plain(kpis.returning_customer_rate),
            repeat_purchase_rate=_plain(kpis.repeat_purchase_rate),
            discount_penetration=_plain(kpis.discount_penetration),
            discount_rate=_plain(kpis.discount_rate),
            growth_t30=_plain(kpis.growth_t30),
            chargebacks=kpis.chargebacks,
            currency=kpis.currency,
            window_start=kpis.window_start,
            window_end=kpis.window_end,
            timezone=kpis.timezone,
            data_freshness=kpis.data_freshness,
            feeds=[FeedSummary.from_feed(f) for f in feeds],
        )


class AttestationResponse(BaseModel):
    """Response for POST /v1/attestations"""

    attestation: Dict[str, Any]
    hash: str
    canonical: str
    feeds: List[FeedSummary]


class VerifyRequest(BaseModel):
    """Request body for POST /v1/attestations/verify"""

    attestation: Dict[str, Any]
    expected_hash: str = Field(..., min_length=1)


class VerifyResponse(BaseModel):
    valid: bool
    hash: str
