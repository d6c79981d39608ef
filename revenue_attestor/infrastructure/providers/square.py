"""Square adapter - Orders and Refunds APIs; Money objects in integer minor units"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.models import FetchResult, FinancialStatus, NormalizedOrder, NormalizedRefund, map_status
from revenue_attestor.domain.money import minor_units
from revenue_attestor.infrastructure.providers.base import ProviderClient, dig, require
from revenue_attestor.utils.date_utils import to_iso_z

PROVIDER = "square"

STATUS_MAP = {
    "completed": FinancialStatus.PAID,
    "open": FinancialStatus.PENDING,
    "draft": FinancialStatus.PENDING,
    "canceled": FinancialStatus.VOIDED,
}


def _money(raw: Dict[str, Any], key: str) -> int:
    return minor_units(dig(raw, key, "amount", default=0))


def is_square_refund(raw: Dict[str, Any]) -> bool:
    """PaymentRefund objects carry payment_id/amount_money and no order state"""
    return "payment_id" in raw and "amount_money" in raw and "state" not in raw


def normalize_square_order(order: Dict[str, Any]) -> NormalizedOrder:
    """Normalize Square order; subtotal excludes tax, service charges and tips but not discounts"""
    order_id = require(order, "id", PROVIDER)
    created_at = require(order, "created_at", PROVIDER, order_id)

    total_cents = _money(order, "total_money")
    discount_cents = _money(order, "total_discount_money")
    tax_cents = _money(order, "total_tax_money")
    service_cents = _money(order, "total_service_charge_money")
    tip_cents = _money(order, "total_tip_money")

    state = (order.get("state") or "").lower()
    return NormalizedOrder(
        id=str(order_id),
        created_at=created_at,
        total_cents=total_cents,
        subtotal_cents=total_cents - tax_cents - service_cents - tip_cents + discount_cents,
        discount_cents=discount_cents,
        line_items_count=len(order.get("line_items") or []),
        financial_status=map_status(STATUS_MAP, state),
        currency=dig(order, "total_money", "currency", default=settings.default_currency),
        customer_id=order.get("customer_id"),
        cancelled_at=order.get("updated_at") if state == "canceled" else None,
        provider=PROVIDER,
    )


def normalize_square_refund(refund: Dict[str, Any]) -> NormalizedRefund:
    """Normalize Square PaymentRefund to common refund format"""
    refund_id = require(refund, "id", PROVIDER)
    order_ref = refund.get("order_id") or require(refund, "payment_id", PROVIDER, refund_id)
    amount = require(refund, "amount_money", PROVIDER, refund_id)

    return NormalizedRefund(
        id=str(refund_id),
        created_at=require(refund, "created_at", PROVIDER, refund_id),
        order_id=str(order_ref),
        amount_cents=minor_units(amount.get("amount")),
        currency=amount.get("currency") or settings.default_currency,
        provider=PROVIDER,
    )


class SquareClient(ProviderClient):
    """Client for Square's Orders/Refunds APIs across a seller's locations"""

    name = PROVIDER

    def __init__(
        self,
        location_ids: List[str] | None = None,
        environment: str | None = None,
        api_version: str | None = None,
        **kwargs: Any,
    ):
        self.environment = environment or settings.provider_environment
        self.api_version = api_version or settings.square_api_version
        self.location_ids = list(location_ids or [])
        super().__init__(**kwargs)

    def default_base_url(self) -> str:
        if self.environment == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    def _error_message(self, response: httpx.Response) -> str:
        try:
            return response.json()["errors"][0]["detail"]
        except (ValueError, KeyError, IndexError, TypeError):
            return super()._error_message(response)

    def _headers(self, credential: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
            "Square-Version": self.api_version,
        }

    async def _locations(self, client: httpx.AsyncClient, credential: str) -> List[str]:
        if self.location_ids:
            return self.location_ids
        response = await self._request(client, "GET", f"{self.base_url}/v2/locations", headers=self._headers(credential))
        return [str(loc["id"]) for loc in self._records(self._decode_object(response), "locations") if loc.get("id")]

    async def fetch_raw(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """
        Fetch completed/open orders and completed refunds created in [start, end].

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
        """
        headers = self._headers(credential)

        async with self._client() as client:
            location_ids = await self._locations(client, credential)
            query = {
                "filter": {
                    "date_time_filter": {"created_at": {"start_at": to_iso_z(start), "end_at": to_iso_z(end)}},
                    "state_filter": {"states": ["COMPLETED", "OPEN"]},
                },
                "sort": {"sort_field": "CREATED_AT", "sort_order": "DESC"},
            }

            async def fetch_orders(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                body: Dict[str, Any] = {"location_ids": location_ids, "query": query, "limit": 500}
                if token:
                    body["cursor"] = token
                response = await self._request(
                    client, "POST", f"{self.base_url}/v2/orders/search", json=body, headers=headers
                )
                payload = self._decode_object(response)
                return self._records(payload, "orders"), payload.get("cursor")

            orders = await self.paginate(fetch_orders, cancel_event)
            if orders.partial:
                return orders

            async def fetch_refunds(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                params = {"begin_time": to_iso_z(start), "end_time": to_iso_z(end), "status": "COMPLETED"}
                if token:
                    params["cursor"] = token
                response = await self._request(client, "GET", f"{self.base_url}/v2/refunds", params=params, headers=headers)
                payload = self._decode_object(response)
                return self._records(payload, "refunds"), payload.get("cursor")

            refunds = await self.paginate(fetch_refunds, cancel_event)

        return FetchResult(
            provider=self.name,
            records=orders.records + refunds.records,
            pages=orders.pages + refunds.pages,
            partial=refunds.partial,
            partial_reason=refunds.partial_reason,
        )

    def normalize(self, raw: Dict[str, Any]) -> Union[NormalizedOrder, NormalizedRefund]:
        if is_square_refund(raw):
            return normalize_square_refund(raw)
        return normalize_square_order(raw)
