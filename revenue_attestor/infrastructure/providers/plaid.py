"""Plaid adapter - bank transactions; revenue inferred from inflows (negative amounts)"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.models import FetchResult, FinancialStatus, NormalizedOrder
from revenue_attestor.domain.money import to_decimal, to_minor_units
from revenue_attestor.infrastructure.providers.base import CanonicalRecord, ProviderClient, dig, require

PROVIDER = "plaid"

REVENUE_KEYWORDS = ("stripe", "square", "paypal", "shopify", "revenue", "sales", "payment", "deposit")
EXCLUDE_KEYWORDS = ("refund", "fee", "transfer", "withdrawal", "tax", "interest")

PAGE_SIZE = 500


def _searchable_text(txn: Dict[str, Any]) -> str:
    parts = [txn.get("name"), txn.get("merchant_name"), *(txn.get("category") or [])]
    parts.append(dig(txn, "personal_finance_category", "detailed"))
    return " ".join(str(p) for p in parts if p).lower()


def is_revenue_deposit(txn: Dict[str, Any]) -> bool:
    """
    Heuristic revenue test for a bank transaction.

    Plaid reports money leaving the account as positive, so only negative
    amounts are inflows. An inflow counts as revenue when categorised as
    income or when its description names a payment processor or sales
    keyword, unless it looks like a refund, fee, transfer or interest.
    """
    try:
        amount = to_decimal(txn.get("amount"))
    except ValueError:
        return False
    if amount >= 0:
        return False

    text = _searchable_text(txn)
    if any(keyword in text for keyword in EXCLUDE_KEYWORDS):
        return False
    if dig(txn, "personal_finance_category", "primary") == "INCOME":
        return True
    return any(keyword in text for keyword in REVENUE_KEYWORDS)


def _posted_at(txn: Dict[str, Any], transaction_id: Any) -> str:
    if txn.get("datetime"):
        return str(txn["datetime"])
    # Date-only postings are pinned to midday UTC so no timezone shifts them a day
    return f"{require(txn, 'date', PROVIDER, transaction_id)}T12:00:00Z"


def normalize_plaid_transaction(txn: Dict[str, Any]) -> NormalizedOrder:
    """Normalize a revenue deposit as a single-item order"""
    transaction_id = require(txn, "transaction_id", PROVIDER)
    currency = txn.get("iso_currency_code") or txn.get("unofficial_currency_code") or settings.default_currency
    amount_cents = abs(to_minor_units(require(txn, "amount", PROVIDER, transaction_id), currency))

    return NormalizedOrder(
        id=str(transaction_id),
        created_at=_posted_at(txn, transaction_id),
        total_cents=amount_cents,
        subtotal_cents=amount_cents,
        discount_cents=0,
        line_items_count=1,
        financial_status=FinancialStatus.PENDING if txn.get("pending") else FinancialStatus.PAID,
        currency=currency,
        customer_id=None,  # Bank deposits carry no customer identity
        provider=PROVIDER,
    )


class PlaidClient(ProviderClient):
    """
    Client for Plaid's /transactions/get.

    The credential passed to fetch_raw is the Item access token; the client
    id and secret identify this application and come from settings.
    """

    name = PROVIDER

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
        **kwargs: Any,
    ):
        self.client_id = client_id or settings.plaid_client_id
        self.secret = secret or settings.plaid_secret
        self.environment = environment or settings.plaid_env
        super().__init__(**kwargs)

    def default_base_url(self) -> str:
        return f"https://{self.environment}.plaid.com"

    def _error_message(self, response: httpx.Response) -> str:
        try:
            body = response.json()
            return f"{body['error_code']}: {body.get('error_message', '')}"
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
        Fetch transactions posted between the start and end dates.

        Raises:
            ProviderFetchError: On timeout, HTTP errors, or a pagination loop
        """
        body = {
            "client_id": self.client_id,
            "secret": self.secret,
            "access_token": credential,
            "start_date": start.astimezone(timezone.utc).date().isoformat(),
            "end_date": end.astimezone(timezone.utc).date().isoformat(),
        }

        async with self._client() as client:

            async def fetch_page(token: Optional[str]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
                offset = int(token or 0)
                response = await self._request(
                    client,
                    "POST",
                    f"{self.base_url}/transactions/get",
                    json={**body, "options": {"count": PAGE_SIZE, "offset": offset}},
                )
                payload = self._decode_object(response)
                records = self._records(payload, "transactions")
                total = payload.get("total_transactions")
                fetched = offset + len(records)
                has_more = records and isinstance(total, (int, Decimal)) and fetched < total
                return records, (str(fetched) if has_more else None)

            return await self.paginate(fetch_page, cancel_event)

    def normalize(self, raw: Dict[str, Any]) -> NormalizedOrder:
        return normalize_plaid_transaction(raw)

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        if not is_revenue_deposit(raw):
            return []
        return [self.normalize(raw)]
