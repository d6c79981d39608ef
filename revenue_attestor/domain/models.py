"""Domain models - pure Python dataclasses representing canonical commerce records"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class FinancialStatus(str, Enum):
    """Closed status vocabulary shared by every provider adapter"""

    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    VOIDED = "voided"
    FAILED = "failed"


# Statuses that never represent realized revenue
NON_REVENUE_STATUSES = frozenset({FinancialStatus.VOIDED, FinancialStatus.FAILED})


def map_status(mapping: Mapping[str, FinancialStatus], raw_status: Any) -> FinancialStatus:
    """
    Total mapping from a provider status to FinancialStatus.

    Lookup is case-insensitive; anything unmapped (including None) is pending
    so the record is kept rather than dropped.
    """
    if raw_status is None:
        return FinancialStatus.PENDING
    return mapping.get(str(raw_status).strip().lower(), FinancialStatus.PENDING)


@dataclass(frozen=True)
class NormalizedOrder:
    """Order (or refund synthesized as a negative order) in minor currency units"""

    id: str
    created_at: str  # ISO 8601 as delivered by the provider
    total_cents: int
    subtotal_cents: int  # Before discounts, tax and shipping
    discount_cents: int
    line_items_count: int
    financial_status: FinancialStatus
    currency: str
    customer_id: Optional[str] = None
    cancelled_at: Optional[str] = None
    provider: str = ""


@dataclass(frozen=True)
class NormalizedRefund:
    """Refund exposed as a first-class object by the provider"""

    id: str
    created_at: str
    order_id: str
    amount_cents: int
    currency: str
    provider: str = ""


@dataclass(frozen=True)
class NormalizedCustomer:
    """Lifetime customer snapshot used for retention metrics"""

    id: str
    created_at: str
    orders_count: int
    total_spent_cents: int
    currency: str = "USD"


@dataclass(frozen=True)
class KPIResult:
    """Immutable KPI snapshot for one trailing window"""

    # Sales (exact major units)
    gross_sales: Decimal
    discounts: Decimal
    refunds: Decimal
    net_sales: Decimal

    # Volume
    orders_count: int
    items_sold: int

    # Value
    aov: Decimal

    # Customers
    new_customers: int
    returning_customer_rate: Decimal
    repeat_purchase_rate: Decimal

    # Pricing
    discount_penetration: Decimal
    discount_rate: Decimal

    # Metadata
    currency: str
    window_start: str
    window_end: str
    timezone: str
    data_freshness: str

    # Trend / risk
    growth_t30: Optional[Decimal] = None
    chargebacks: Optional[int] = None


@dataclass
class FetchResult:
    """Raw records pulled from a provider, with pagination bookkeeping"""

    provider: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    pages: int = 0
    partial: bool = False
    partial_reason: Optional[str] = None


@dataclass
class NormalizationReport:
    """Outcome of normalizing a raw batch; skipped records are counted, not fatal"""

    provider: str
    orders: List[NormalizedOrder] = field(default_factory=list)
    refunds: List[NormalizedRefund] = field(default_factory=list)
    customers: List[NormalizedCustomer] = field(default_factory=list)
    skipped: int = 0
    skipped_ids: List[str] = field(default_factory=list)

    def merge(self, other: "NormalizationReport") -> "NormalizationReport":
        self.orders.extend(other.orders)
        self.refunds.extend(other.refunds)
        self.customers.extend(other.customers)
        self.skipped += other.skipped
        self.skipped_ids.extend(other.skipped_ids)
        return self
