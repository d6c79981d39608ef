"""Shopify adapter - Admin REST orders, embedded refunds and customers; decimal-string money"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.models import (
    FetchResult,
    FinancialStatus,
    NormalizedCustomer,
    NormalizedOrder,
    NormalizedRefund,
    map_status,
)
from revenue_attestor.domain.money import to_minor_units
from revenue_attestor.infrastructure.providers.base import CanonicalRecord, ProviderClient, dig, require
from revenue_attestor.utils.date_utils import to_iso_z

PROVIDER = "shopify"

STATUS_MAP = {
    "paid": FinancialStatus.PAID,
    "partially_paid": FinancialStatus.PAID,
    "partially_refunded": FinancialStatus.PAID,  # Refunded portion arrives as refund records
    "authorized": FinancialStatus.PENDING,
    "pending": FinancialStatus.PENDING,
    "refunded": FinancialStatus.REFUNDED,
    "voided": FinancialStatus.VOIDED,
}

ORDER_FIELDS = (
    "id,created_at,total_price,subtotal_price,total_discounts,total_line_items_price,"
    "financial_status,customer,line_items,currency,cancelled_at,refunds"
)


def normalize_shopify_order(order: Dict[str, Any]) -> NormalizedOrder:
    """Normalize Shopify order; subtotal is the pre-discount line item total"""
    order_id = require(order, "id", PROVIDER)
    created_at = require(order, "created_at", PROVIDER, order_id)
    currency = order.get("currency") or settings.default_currency

    discount_cents = to_minor_units(order.get("total_discounts"), currency)
    if order.get("total_line_items_price") is not None:
        subtotal_cents = to_minor_units(order["total_line_items_price"], currency)
    else:
        # subtotal_price is already net of discounts
        subtotal_cents = to_minor_units(order.get("subtotal_price"), currency) + discount_cents

    customer_id = dig(order, "customer", "id")
    return NormalizedOrder(
        id=str(order_id),
        created_at=created_at,
        total_cents=to_minor_units(order.get("total_price"), currency),
        subtotal_cents=subtotal_cents,
        discount_cents=discount_cents,
        line_items_count=len(order.get("line_items") or []),
        financial_status=map_status(STATUS_MAP, order.get("financial_status")),
        currency=currency,
        customer_id=None if customer_id is None else str(customer_id),
        cancelled_at=order.get("cancelled_at"),
        provider=PROVIDER,
    )


def normalize_shopify_refund(refund: Dict[str, Any], order_id: str, order_currency: str | None = None) -> NormalizedRefund:
    """Normalize a Shopify refund; the amount is the sum of its successful refund transactions"""
    refund_id = require(refund, "id", PROVIDER)
    transactions = [
        t
        for t in refund.get("transactions") or []
        if t.get("kind", "refund") == "refund" and t.get("status", "success") == "success"
    ]
    currency = (transactions[0].get("currency") if transactions else None) or order_currency or settings.default_currency

    return NormalizedRefund(
        id=str(refund_id),
        created_at=require(refund, "created_at", PROVIDER, refund_id),
        order_id=str(order_id),
        amount_cents=sum(to_minor_units(t.get("amount"), currency) for t in transactions),
        currency=currency,
        provider=PROVIDER,
    )


def normalize_shopify_customer(customer: Dict[str, Any]) -> NormalizedCustomer:
    """Normalize Shopify customer data"""
    customer_id = require(customer, "id", PROVIDER)
    currency = customer.get("currency") or settings.default_currency
    return NormalizedCustomer(
        id=str(customer_id),
        created_at=require(customer, "created_at", PROVIDER, customer_id),
        orders_count=int(customer.get("orders_count") or 0),
        total_spent_cents=to_minor_units(customer.get("total_spent"), currency),
        currency=currency,
    )


class ShopifyClient(ProviderClient):
    """Client for one Shopify store's Admin REST API"""

    name = PROVIDER

    def __init__(self, shop: str, api_version: str | None = None, **kwargs: Any):
        self.shop = shop.replace("https://", "").replace("http://", "").rstrip("/")
        self.api_version = api_version or settings.shopify_api_version
        super().__init__(**kwargs)

    def default_base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    def _error_message(self, response: httpx.Response) -> str:
        try:
            errors = response.json()["errors"]
        except (ValueError, KeyError, TypeError):
            return super()._error_message(response)
        return errors if isinstance(errors, str) else str(errors)

    async def _follow_links(
        self,
        resource: str,
        key: str,
        params: Dict[str, str],
        credential: str,
        cancel_event: asyncio.Event | None,
    ) -> FetchResult:
        headers = {"X-Shopify-Access-Token": credential}

        async with self._client() as client:

            async def fetch_page(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                # Cursor pages are addressed by the full URL from the Link header
                if token:
                    response = await self._request(client, "GET", token, headers=headers)
                else:
                    response = await self._request(
                        client, "GET", f"{self.base_url}/{resource}.json", params=params, headers=headers
                    )
                records = self._records(self._decode_object(response), key)
                return records, response.links.get("next", {}).get("url")

            return await self.paginate(fetch_page, cancel_event)

    async def fetch_raw(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """
        Fetch orders (any status, refunds embedded) touched since start.

        Filtering on updated_at brings in older orders refunded inside the
        window; the KPI engine windows orders and refunds by their own dates.

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
        """
        params = {
            "status": "any",
            "updated_at_min": to_iso_z(start),
            "limit": "250",
            "fields": ORDER_FIELDS,
        }
        return await self._follow_links("orders", "orders", params, credential, cancel_event)

    async def fetch_customers(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """Customers touched in the period; placing an order bumps updated_at"""
        params = {
            "updated_at_min": to_iso_z(start),
            "updated_at_max": to_iso_z(end),
            "limit": "250",
            "fields": "id,created_at,orders_count,total_spent,currency",
        }
        return await self._follow_links("customers", "customers", params, credential, cancel_event)

    def normalize(self, raw: Dict[str, Any]) -> NormalizedOrder:
        return normalize_shopify_order(raw)

    def normalize_customer(self, raw: Dict[str, Any]) -> NormalizedCustomer:
        return normalize_shopify_customer(raw)

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        order = self.normalize(raw)
        refunds = [normalize_shopify_refund(r, order.id, order.currency) for r in raw.get("refunds") or []]
        return [order, *refunds]

    def expand_customer(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        return [self.normalize_customer(raw)]
