"""Toast adapter - POS orders with checks; JSON decimal money, payment refunds as negative orders"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.exceptions import NormalizationError
from revenue_attestor.domain.models import FetchResult, FinancialStatus, NormalizedOrder
from revenue_attestor.domain.money import to_minor_units
from revenue_attestor.infrastructure.providers.base import CanonicalRecord, ProviderClient, dig, require

PROVIDER = "toast"

PAGE_SIZE = 100

SETTLED_CHECK_STATUSES = frozenset({"PAID", "CLOSED"})


def toast_timestamp(moment: datetime) -> str:
    """Toast's query format: 2024-05-01T00:00:00.000+0000"""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}+0000"


def _live_checks(order: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [c for c in order.get("checks") or [] if not c.get("voided") and not c.get("deleted")]


def _cents(value: Any) -> int:
    return to_minor_units(value, settings.default_currency)


def _discount_cents(entity: Dict[str, Any]) -> int:
    return sum(_cents(d.get("discountAmount")) for d in entity.get("appliedDiscounts") or [])


def _order_status(order: Dict[str, Any], checks: List[Dict[str, Any]]) -> FinancialStatus:
    if order.get("voided") or order.get("deleted"):
        return FinancialStatus.VOIDED
    if not checks:
        return FinancialStatus.PENDING
    statuses = {str(c.get("paymentStatus") or "").upper() for c in checks}
    return FinancialStatus.PAID if statuses <= SETTLED_CHECK_STATUSES else FinancialStatus.PENDING


def normalize_toast_order(order: Dict[str, Any]) -> NormalizedOrder:
    """
    Normalize a Toast order by summing its live checks.

    Check `amount` is after discounts and before tax; `totalAmount` includes
    tax. Orders fetched without checks fall back to order-level fields.
    """
    guid = require(order, "guid", PROVIDER)
    created_at = order.get("openedDate") or require(order, "createdDate", PROVIDER, guid)
    checks = _live_checks(order)

    if checks:
        total_cents = sum(_cents(c.get("totalAmount")) for c in checks)
        net_cents = sum(_cents(c.get("amount")) for c in checks)
        discount_cents = sum(_discount_cents(c) for c in checks)
        line_items = sum(1 for c in checks for s in c.get("selections") or [] if not s.get("voided"))
        customer_id = next((dig(c, "customer", "guid") for c in checks if dig(c, "customer", "guid")), None)
    else:
        total_cents = _cents(order.get("totalAmount"))
        discount_cents = _discount_cents(order)
        if order.get("amount") is not None:
            net_cents = _cents(order["amount"])
        else:
            net_cents = total_cents - _cents(order.get("taxAmount"))
        line_items = len(order.get("selections") or [])
        customer_id = dig(order, "customer", "guid")

    status = _order_status(order, checks)
    return NormalizedOrder(
        id=str(guid),
        created_at=created_at,
        total_cents=total_cents,
        subtotal_cents=net_cents + discount_cents,
        discount_cents=discount_cents,
        line_items_count=line_items,
        financial_status=status,
        currency=settings.default_currency,  # Toast reports restaurant-currency amounts without a code
        customer_id=customer_id,
        cancelled_at=order.get("voidDate") if status == FinancialStatus.VOIDED else None,
        provider=PROVIDER,
    )


def normalize_toast_refunds(order: Dict[str, Any]) -> List[NormalizedOrder]:
    """Synthesize each refunded payment on the order's checks as a negative order"""
    guid = require(order, "guid", PROVIDER)
    refunds = []
    for check in order.get("checks") or []:
        for payment in check.get("payments") or []:
            refund = payment.get("refund")
            if not refund:
                continue
            amount_cents = abs(_cents(refund.get("refundAmount")))
            if amount_cents == 0:
                continue
            payment_guid = require(payment, "guid", PROVIDER, guid)
            refunded_at = refund.get("refundDate") or payment.get("paidDate") or order.get("openedDate")
            if not refunded_at:
                raise NormalizationError(PROVIDER, str(guid), "refund without a refundDate")
            refunds.append(
                NormalizedOrder(
                    id=f"{payment_guid}-refund",
                    created_at=refunded_at,
                    total_cents=-amount_cents,
                    subtotal_cents=-amount_cents,
                    discount_cents=0,
                    line_items_count=0,
                    financial_status=FinancialStatus.REFUNDED,
                    currency=settings.default_currency,
                    customer_id=dig(check, "customer", "guid"),
                    cancelled_at=refunded_at,
                    provider=PROVIDER,
                )
            )
    return refunds


class ToastClient(ProviderClient):
    """Client for one Toast restaurant's Orders API (ordersBulk)"""

    name = PROVIDER

    def __init__(self, restaurant_guid: str, environment: str | None = None, **kwargs: Any):
        self.restaurant_guid = restaurant_guid
        self.environment = environment or settings.provider_environment
        super().__init__(**kwargs)

    def default_base_url(self) -> str:
        if self.environment == "production":
            return "https://ws-api.toasttab.com"
        return "https://ws-sandbox-api.eng.toasttab.com"

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
        Fetch orders opened in [start, end]; a short page ends the listing.

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
        """
        headers = {
            "Authorization": f"Bearer {credential}",
            "Toast-Restaurant-External-ID": self.restaurant_guid,
        }
        params = {"startDate": toast_timestamp(start), "endDate": toast_timestamp(end), "pageSize": str(PAGE_SIZE)}

        async with self._client() as client:

            async def fetch_page(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                page = int(token or 1)
                response = await self._request(
                    client,
                    "GET",
                    f"{self.base_url}/orders/v2/ordersBulk",
                    params={**params, "page": str(page)},
                    headers=headers,
                )
                records = self._records(self._decode(response), None)
                return records, (str(page + 1) if len(records) >= PAGE_SIZE else None)

            return await self.paginate(fetch_page, cancel_event)

    def normalize(self, raw: Dict[str, Any]) -> NormalizedOrder:
        return normalize_toast_order(raw)

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        return [self.normalize(raw), *normalize_toast_refunds(raw)]
