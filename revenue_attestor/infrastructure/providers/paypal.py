"""PayPal adapter - Transaction Search API; signed decimal-string money keyed by event code"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.models import FetchResult, FinancialStatus, NormalizedOrder, map_status
from revenue_attestor.domain.money import to_minor_units
from revenue_attestor.infrastructure.providers.base import CanonicalRecord, ProviderClient, dig, require, within_window
from revenue_attestor.utils.date_utils import to_iso_z

PROVIDER = "paypal"

STATUS_MAP = {
    "s": FinancialStatus.PAID,
    "p": FinancialStatus.PENDING,
    "v": FinancialStatus.VOIDED,
    "f": FinancialStatus.FAILED,
    "d": FinancialStatus.FAILED,
}

SALE_EVENT_CODES = frozenset({"T0000", "T0006", "T0007", "T0013"})
REFUND_EVENT_CODES = frozenset({"T1106", "T1107"})
CHARGEBACK_EVENT_CODES = frozenset({"T1201"})

# Transaction Search rejects date ranges longer than 31 days
MAX_SEARCH_SPAN = timedelta(days=31)


def event_code(raw: Dict[str, Any]) -> str:
    return str(dig(raw, "transaction_info", "transaction_event_code", default="")).upper()


def _info(raw: Dict[str, Any]) -> Dict[str, Any]:
    return require(raw, "transaction_info", PROVIDER)


def _amount(info: Dict[str, Any], key: str, currency: str) -> int:
    return to_minor_units(dig(info, key, "value", default=0), currency)


def normalize_paypal_sale(raw: Dict[str, Any]) -> NormalizedOrder:
    """Normalize a sale event; subtotal = gross - tax - shipping + discount"""
    info = _info(raw)
    transaction_id = require(info, "transaction_id", PROVIDER)
    created_at = require(info, "transaction_initiation_date", PROVIDER, transaction_id)
    amount = require(info, "transaction_amount", PROVIDER, transaction_id)
    currency = amount.get("currency_code") or settings.default_currency

    total_cents = to_minor_units(amount.get("value"), currency)
    discount_cents = abs(_amount(info, "discount_amount", currency))
    tax_cents = _amount(info, "sales_tax_amount", currency)
    shipping_cents = _amount(info, "shipping_amount", currency)

    status = map_status(STATUS_MAP, info.get("transaction_status"))
    item_details = dig(raw, "cart_info", "item_details", default=[])
    return NormalizedOrder(
        id=str(transaction_id),
        created_at=created_at,
        total_cents=total_cents,
        subtotal_cents=total_cents - tax_cents - shipping_cents + discount_cents,
        discount_cents=discount_cents,
        line_items_count=len(item_details) or 1,
        financial_status=status,
        currency=currency,
        customer_id=dig(raw, "payer_info", "account_id"),
        cancelled_at=info.get("transaction_updated_date") if status == FinancialStatus.VOIDED else None,
        provider=PROVIDER,
    )


def normalize_paypal_refund(raw: Dict[str, Any]) -> NormalizedOrder:
    """Synthesize a refund event as a negative, refunded order"""
    info = _info(raw)
    transaction_id = require(info, "transaction_id", PROVIDER)
    created_at = require(info, "transaction_initiation_date", PROVIDER, transaction_id)
    amount = require(info, "transaction_amount", PROVIDER, transaction_id)
    currency = amount.get("currency_code") or settings.default_currency
    refund_cents = abs(to_minor_units(amount.get("value"), currency))

    return NormalizedOrder(
        id=str(transaction_id),
        created_at=created_at,
        total_cents=-refund_cents,
        subtotal_cents=-refund_cents,
        discount_cents=0,
        line_items_count=0,
        financial_status=FinancialStatus.REFUNDED,
        currency=currency,
        customer_id=dig(raw, "payer_info", "account_id"),
        cancelled_at=created_at,
        provider=PROVIDER,
    )


def search_windows(start: datetime, end: datetime) -> List[Tuple[datetime, datetime]]:
    """Split [start, end] into consecutive spans the search endpoint accepts"""
    windows = []
    cursor = start
    while cursor < end:
        upper = min(cursor + MAX_SEARCH_SPAN, end)
        windows.append((cursor, upper))
        cursor = upper
    return windows or [(start, end)]


class PayPalClient(ProviderClient):
    """Client for PayPal's Transaction Search reporting API"""

    name = PROVIDER

    def __init__(self, environment: str | None = None, **kwargs: Any):
        self.environment = environment or settings.provider_environment
        super().__init__(**kwargs)

    def default_base_url(self) -> str:
        if self.environment == "production":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
            return body.get("message") or body["error_description"]
        except (ValueError, KeyError, TypeError, AttributeError):
            return super()._error_message(response)

    async def fetch_raw(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """
        Fetch every transaction in [start, end], one search per 31-day span.

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
        """
        headers = {"Authorization": f"Bearer {credential}", "Content-Type": "application/json"}
        result = FetchResult(provider=self.name)

        async with self._client() as client:
            for window_start, window_end in search_windows(start, end):
                params = {
                    "start_date": to_iso_z(window_start),
                    "end_date": to_iso_z(window_end),
                    "fields": "transaction_info,payer_info,cart_info",
                    "page_size": "500",
                }

                async def fetch_page(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                    # Later pages are addressed by the HATEOAS next link
                    if token:
                        response = await self._request(client, "GET", token, headers=headers)
                    else:
                        response = await self._request(
                            client, "GET", f"{self.base_url}/v1/reporting/transactions", params=params, headers=headers
                        )
                    payload = self._decode_object(response)
                    next_link = next(
                        (link.get("href") for link in payload.get("links") or [] if link.get("rel") == "next"), None
                    )
                    return self._records(payload, "transaction_details"), next_link

                page = await self.paginate(fetch_page, cancel_event)
                result.records.extend(page.records)
                result.pages += page.pages
                if page.partial:
                    result.partial = True
                    result.partial_reason = page.partial_reason
                    break

        return result

    def normalize(self, raw: Dict[str, Any]) -> NormalizedOrder:
        if event_code(raw) in REFUND_EVENT_CODES:
            return normalize_paypal_refund(raw)
        return normalize_paypal_sale(raw)

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        code = event_code(raw)
        if code in SALE_EVENT_CODES or code in REFUND_EVENT_CODES:
            return [self.normalize(raw)]
        # Fees, transfers, holds and chargebacks are not sales activity
        return []

    def count_chargebacks(self, raws: List[Dict[str, Any]], start: datetime, end: datetime) -> Optional[int]:
        return sum(
            1
            for raw in raws
            if event_code(raw) in CHARGEBACK_EVENT_CODES
            and within_window(dig(raw, "transaction_info", "transaction_initiation_date"), start, end)
        )
