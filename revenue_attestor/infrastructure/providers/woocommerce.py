"""WooCommerce adapter - REST v3 orders; decimal-string money, refunds synthesized as negative orders"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.models import FetchResult, FinancialStatus, NormalizedOrder, map_status
from revenue_attestor.domain.money import to_minor_units
from revenue_attestor.infrastructure.providers.base import CanonicalRecord, ProviderClient, require
from revenue_attestor.utils.date_utils import to_iso_z

PROVIDER = "woocommerce"

STATUS_MAP = {
    "completed": FinancialStatus.PAID,
    "processing": FinancialStatus.PAID,
    "pending": FinancialStatus.PENDING,
    "on-hold": FinancialStatus.PENDING,
    "refunded": FinancialStatus.REFUNDED,
    "cancelled": FinancialStatus.VOIDED,
    "failed": FinancialStatus.FAILED,
}


def _created_at(order: Dict[str, Any]) -> str:
    # date_created_gmt is UTC without an offset; date_created is store-local
    if order.get("date_created_gmt"):
        return str(order["date_created_gmt"]) + "Z"
    return require(order, "date_created", PROVIDER, order.get("id"))


def normalize_woocommerce_order(order: Dict[str, Any]) -> NormalizedOrder:
    """Normalize WooCommerce order; subtotal = total - tax - shipping + discounts"""
    order_id = order.get("id") or order.get("number")
    if order_id is None:
        require(order, "id", PROVIDER)
    currency = order.get("currency") or settings.default_currency

    total_cents = to_minor_units(order.get("total"), currency)
    discount_cents = to_minor_units(order.get("discount_total"), currency)
    tax_cents = to_minor_units(order.get("total_tax"), currency)
    shipping_cents = to_minor_units(order.get("shipping_total"), currency)

    status = (order.get("status") or "").lower()
    customer_id = order.get("customer_id")

    return NormalizedOrder(
        id=str(order_id),
        created_at=_created_at(order),
        total_cents=total_cents,
        subtotal_cents=total_cents - tax_cents - shipping_cents + discount_cents,
        discount_cents=discount_cents,
        line_items_count=len(order.get("line_items") or []),
        financial_status=map_status(STATUS_MAP, status),
        currency=currency,
        customer_id=str(customer_id) if customer_id else None,  # 0 means guest checkout
        cancelled_at=order.get("date_modified") if status in ("cancelled", "refunded") else None,
        provider=PROVIDER,
    )


def refunded_cents(order: Dict[str, Any]) -> int:
    """Total refunded on an order; refund line totals are negative strings"""
    currency = order.get("currency") or settings.default_currency
    refunds = order.get("refunds") or []
    if refunds:
        return sum(abs(to_minor_units(r.get("total"), currency)) for r in refunds)
    if order.get("refunds_total") is not None:
        return abs(to_minor_units(order["refunds_total"], currency))
    if (order.get("status") or "").lower() == "refunded":
        return abs(to_minor_units(order.get("total"), currency))
    return 0


def normalize_woocommerce_refund(order: Dict[str, Any]) -> NormalizedOrder:
    """Synthesize the refunds on an order as one negative, refunded order"""
    base = normalize_woocommerce_order(order)
    amount = refunded_cents(order)
    refunded_at = order.get("date_modified_gmt")
    refunded_at = str(refunded_at) + "Z" if refunded_at else (order.get("date_modified") or base.created_at)

    return NormalizedOrder(
        id=f"{base.id}-refund",
        created_at=refunded_at,
        total_cents=-amount,
        subtotal_cents=-amount,
        discount_cents=0,
        line_items_count=0,
        financial_status=FinancialStatus.REFUNDED,
        currency=base.currency,
        customer_id=base.customer_id,
        cancelled_at=refunded_at,
        provider=PROVIDER,
    )


class WooCommerceClient(ProviderClient):
    """
    Client for a WooCommerce store's REST API (v3).

    The credential passed to fetch_raw is the consumer key; the consumer
    secret is bound at construction. Requests use HTTP Basic over HTTPS.
    """

    name = PROVIDER

    def __init__(self, store_url: str, consumer_secret: str, **kwargs: Any):
        self.store_url = store_url.rstrip("/")
        self.consumer_secret = consumer_secret
        super().__init__(**kwargs)

    def default_base_url(self) -> str:
        return f"{self.store_url}/wp-json/wc/v3"

    def _error_message(self, response: httpx.Response) -> str:
        try:
            return response.json()["message"]
        except (ValueError, KeyError, TypeError):
            return super()._error_message(response)

    async def fetch_raw(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """
        Fetch orders of every status modified since start, 100 per page.

        Older orders refunded inside the window are modified by the refund, so
        they are fetched too; the KPI engine windows records by their own dates.

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
        """
        auth = (credential, self.consumer_secret)
        params = {
            "modified_after": to_iso_z(start),
            "per_page": "100",
            "status": "any",
            "dates_are_gmt": "true",
        }

        async with self._client() as client:

            async def fetch_page(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                page = int(token or 1)
                response = await self._request(
                    client, "GET", f"{self.base_url}/orders", params={**params, "page": str(page)}, auth=auth
                )
                records = self._records(self._decode(response), None)
                total_pages = response.headers.get("X-WP-TotalPages")
                if total_pages is not None and total_pages.isdigit():
                    has_next = page < int(total_pages)
                else:
                    has_next = "next" in response.links
                return records, (str(page + 1) if has_next and records else None)

            return await self.paginate(fetch_page, cancel_event)

    def normalize(self, raw: Dict[str, Any]) -> NormalizedOrder:
        return normalize_woocommerce_order(raw)

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        order = self.normalize(raw)
        if refunded_cents(raw) > 0:
            return [order, normalize_woocommerce_refund(raw)]
        return [order]
