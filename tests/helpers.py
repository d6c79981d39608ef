"""Shared builders and fixed clock for the test suite"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from revenue_attestor.domain.models import FinancialStatus, NormalizedOrder, NormalizedRefund

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Fixed clock for every window computation in the suite
NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def load_fixture(name: str) -> Any:
    """Provider payload captured from an API response, decimals kept exact"""
    return json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"), parse_float=Decimal)


def make_order(
    order_id: str,
    created_at: str,
    subtotal_cents: int,
    discount_cents: int = 0,
    status: FinancialStatus = FinancialStatus.PAID,
    customer_id: str | None = None,
    currency: str = "USD",
    line_items_count: int = 1,
) -> NormalizedOrder:
    return NormalizedOrder(
        id=order_id,
        created_at=created_at,
        total_cents=subtotal_cents - discount_cents,
        subtotal_cents=subtotal_cents,
        discount_cents=discount_cents,
        line_items_count=line_items_count,
        financial_status=status,
        currency=currency,
        customer_id=customer_id,
        provider="test",
    )


def make_refund(refund_id: str, created_at: str, order_id: str, amount_cents: int, currency: str = "USD") -> NormalizedRefund:
    return NormalizedRefund(
        id=refund_id,
        created_at=created_at,
        order_id=order_id,
        amount_cents=amount_cents,
        currency=currency,
        provider="test",
    )
