"""Stripe adapter - charges and refunds, amounts in integer minor units"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.models import FetchResult, FinancialStatus, NormalizedOrder, NormalizedRefund, map_status
from revenue_attestor.domain.money import minor_units
from revenue_attestor.infrastructure.providers.base import CanonicalRecord, ProviderClient, require, within_window
from revenue_attestor.utils.date_utils import epoch_millis, from_epoch_seconds

PROVIDER = "stripe"

STATUS_MAP = {
    "succeeded": FinancialStatus.PAID,
    "pending": FinancialStatus.PENDING,
    "failed": FinancialStatus.FAILED,
}

# Refunds in these states never moved money
INEFFECTIVE_REFUND_STATUSES = frozenset({"failed", "canceled"})


def _charge_created_at(charge: Dict[str, Any]) -> Optional[str]:
    try:
        return from_epoch_seconds(charge["created"])
    except (KeyError, TypeError, ValueError, OverflowError):
        return None


def normalize_stripe_charge(charge: Dict[str, Any]) -> NormalizedOrder:
    """Normalize Stripe charge to common order format"""
    charge_id = require(charge, "id", PROVIDER)
    created = require(charge, "created", PROVIDER, charge_id)
    amount = minor_units(require(charge, "amount", PROVIDER, charge_id))
    currency = str(require(charge, "currency", PROVIDER, charge_id)).upper()

    if charge.get("status") is not None:
        status = map_status(STATUS_MAP, charge["status"])
    else:
        status = FinancialStatus.PAID if charge.get("paid") else FinancialStatus.PENDING

    customer = charge.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    created_at = from_epoch_seconds(created)
    return NormalizedOrder(
        id=str(charge_id),
        created_at=created_at,
        total_cents=amount,
        subtotal_cents=amount,
        discount_cents=0,  # Stripe doesn't track discounts on charges
        line_items_count=1,  # Charges don't have line items
        financial_status=status,
        currency=currency,
        customer_id=customer or None,
        cancelled_at=created_at if charge.get("refunded") else None,
        provider=PROVIDER,
    )


def normalize_stripe_refund(refund: Dict[str, Any]) -> NormalizedRefund:
    """Normalize Stripe refund to common refund format"""
    refund_id = require(refund, "id", PROVIDER)
    charge = require(refund, "charge", PROVIDER, refund_id)
    if isinstance(charge, dict):
        charge = require(charge, "id", PROVIDER, refund_id)

    return NormalizedRefund(
        id=str(refund_id),
        created_at=from_epoch_seconds(require(refund, "created", PROVIDER, refund_id)),
        order_id=str(charge),
        amount_cents=minor_units(require(refund, "amount", PROVIDER, refund_id)),
        currency=str(require(refund, "currency", PROVIDER, refund_id)).upper(),
        provider=PROVIDER,
    )


class StripeClient(ProviderClient):
    """Client for the Stripe charges/refunds list endpoints"""

    name = PROVIDER

    def __init__(self, api_version: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.api_version = api_version or settings.stripe_api_version

    def default_base_url(self) -> str:
        return "https://api.stripe.com"

    def _error_message(self, response: httpx.Response) -> str:
        try:
            return response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return super()._error_message(response)

    async def _list(
        self,
        client: httpx.AsyncClient,
        resource: str,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None,
    ) -> FetchResult:
        headers = {"Authorization": f"Bearer {credential}", "Stripe-Version": self.api_version}
        base_params = {
            "limit": "100",
            "created[gte]": str(epoch_millis(start) // 1000),
            "created[lte]": str(epoch_millis(end) // 1000),
        }

        async def fetch_page(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
            params = dict(base_params)
            if token:
                params["starting_after"] = token
            response = await self._request(client, "GET", f"{self.base_url}/v1/{resource}", params=params, headers=headers)
            payload = self._decode_object(response)
            records = self._records(payload, "data")
            has_more = bool(payload.get("has_more")) and bool(records)
            return records, (str(records[-1].get("id")) if has_more else None)

        return await self.paginate(fetch_page, cancel_event)

    async def fetch_raw(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """
        Fetch charges and refunds created in [start, end].

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
            ProviderPayloadError: On an unparseable body
        """
        async with self._client() as client:
            charges = await self._list(client, "charges", credential, start, end, cancel_event)
            if charges.partial:
                return charges
            refunds = await self._list(client, "refunds", credential, start, end, cancel_event)

        return FetchResult(
            provider=self.name,
            records=charges.records + refunds.records,
            pages=charges.pages + refunds.pages,
            partial=refunds.partial,
            partial_reason=refunds.partial_reason,
        )

    def normalize(self, raw: Dict[str, Any]) -> Union[NormalizedOrder, NormalizedRefund]:
        if raw.get("object") == "refund":
            return normalize_stripe_refund(raw)
        return normalize_stripe_charge(raw)

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        if raw.get("object") == "refund" and raw.get("status") in INEFFECTIVE_REFUND_STATUSES:
            return []
        return [self.normalize(raw)]

    def count_chargebacks(self, raws: List[Dict[str, Any]], start: datetime, end: datetime) -> Optional[int]:
        # A dispute is dated by the charge it contests
        return sum(
            1
            for raw in raws
            if raw.get("object") != "refund"
            and raw.get("disputed")
            and within_window(_charge_created_at(raw), start, end)
        )
