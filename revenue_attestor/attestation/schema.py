"""
Attestation v1 - canonical document schema

Rules:
- Fixed decimal precision (2 decimals for currency, 4 for rates)
- Counts are plain integers
- No PII
- Field names on the wire are the camelCase/snake_case keys below
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator

SCHEMA_VERSION = "1.0.0"

CURRENCY_PATTERN = re.compile(r"-?[0-9]+\.[0-9]{2}")
RATE_PATTERN = re.compile(r"-?[0-9]+\.[0-9]{4}")

CURRENCY_FIELDS = ("gross_sales", "discounts", "refunds", "net_sales", "aov")
RATE_FIELDS = (
    "returning_customer_rate",
    "repeat_purchase_rate",
    "discount_penetration",
    "discount_rate",
    "growth_t30",
)
COUNT_FIELDS = ("orders_count", "items_sold", "new_customers", "chargebacks")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")


class AttestationPeriod(_Frozen):
    start: str  # ISO 8601
    end: str
    timezone: str  # IANA


class AttestationMerchant(_Frozen):
    merchant_id: str = Field(..., alias="merchantId", min_length=1)  # Business wallet address
    currency: str = Field(..., min_length=3, max_length=3)
    platform_id: Optional[str] = Field(default=None, alias="platformId")


class AttestationMetrics(_Frozen):
    # Revenue
    gross_sales: str
    discounts: str
    refunds: str
    net_sales: str

    # Volume
    orders_count: StrictInt = Field(..., ge=0)
    items_sold: StrictInt = Field(..., ge=0)

    # Value
    aov: str

    # Customers
    new_customers: StrictInt = Field(..., ge=0)
    returning_customer_rate: str
    repeat_purchase_rate: str

    # Pricing
    discount_penetration: str
    discount_rate: str

    # Trend
    growth_t30: Optional[str] = None

    # Risk
    chargebacks: Optional[StrictInt] = Field(default=None, ge=0)

    @field_validator(*CURRENCY_FIELDS)
    @classmethod
    def _two_decimals(cls, value: str) -> str:
        if not CURRENCY_PATTERN.fullmatch(value):
            raise ValueError(f"currency amount must have exactly 2 decimals, got {value!r}")
        return value

    @field_validator(*RATE_FIELDS)
    @classmethod
    def _four_decimals(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not RATE_PATTERN.fullmatch(value):
            raise ValueError(f"rate must have exactly 4 decimals, got {value!r}")
        return value


class AttestationV1(_Frozen):
    """Versioned revenue attestation; immutable once built"""

    schema_version: Literal["1.0.0"] = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    period: AttestationPeriod
    merchant: AttestationMerchant
    metrics: AttestationMetrics
    nonce: str  # Unique per attestation (build time in epoch millis)
    timestamp: str  # ISO 8601 when built
    previous_cid: Optional[str] = Field(default=None, alias="previousCid")  # Prior period's content address

    def to_document(self) -> dict:
        """Wire-form dict: aliased keys, absent optionals omitted"""
        return self.model_dump(by_alias=True, exclude_none=True)
