"""Shared HTTP, pagination and normalization plumbing for provider adapters"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

import httpx

from revenue_attestor.config import settings
from revenue_attestor.domain.exceptions import (
    NormalizationError,
    PaginationLoopError,
    ProviderFetchError,
    ProviderPayloadError,
)
from revenue_attestor.domain.models import (
    FetchResult,
    NormalizationReport,
    NormalizedCustomer,
    NormalizedOrder,
    NormalizedRefund,
)
from revenue_attestor.infrastructure.observability.metrics import (
    normalization_skipped_counter,
    provider_fetch_failures_counter,
    provider_latency_histogram,
    provider_pages_counter,
    record_partial_fetch,
)
from revenue_attestor.utils.date_utils import parse_timestamp

logger = logging.getLogger(__name__)

CanonicalRecord = Union[NormalizedOrder, NormalizedRefund, NormalizedCustomer]

# A page fetcher takes the continuation token (None for the first page) and
# returns that page's records plus the next token, or None when exhausted.
PageFetcher = Callable[[Optional[str]], Awaitable[Tuple[List[Dict[str, Any]], Optional[str]]]]

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def require(raw: Mapping[str, Any], key: str, provider: str, record_id: Any = None) -> Any:
    """Fetch a required field or raise NormalizationError"""
    value = raw.get(key) if isinstance(raw, Mapping) else None
    if value is None or value == "":
        raise NormalizationError(provider, None if record_id is None else str(record_id), f"missing '{key}'")
    return value


def within_window(value: Any, start: datetime, end: datetime) -> bool:
    """Whether a provider timestamp falls in [start, end]; missing or malformed values never do"""
    try:
        moment = parse_timestamp(value)
    except (TypeError, ValueError):
        return False
    return start <= moment <= end


def dig(raw: Any, *path: str, default: Any = None) -> Any:
    """Walk nested dicts, returning `default` on any missing hop"""
    current = raw
    for key in path:
        if not isinstance(current, Mapping):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


class ProviderClient(ABC):
    """
    Base client for a commerce/payment provider.

    Subclasses implement `fetch_raw` (network I/O) and `normalize` (pure).
    """

    name: str = "provider"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        max_pages: int | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or self.default_base_url()).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_pages = max_pages or settings.max_pages
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.backoff_base = settings.retry_backoff_base if backoff_base is None else backoff_base
        self.transport = transport

    def default_base_url(self) -> str:
        return ""

    # ------------------------------------------------------------------ fetch

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _error_message(self, response: httpx.Response) -> str:
        """Upstream error text; providers override to dig into their error envelope"""
        return response.reason_phrase or f"HTTP {response.status_code}"

    def _fail(self, message: str, status_code: int | None = None) -> ProviderFetchError:
        provider_fetch_failures_counter.labels(provider=self.name).inc()
        return ProviderFetchError(self.name, message, status_code=status_code)

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Issue one request with retry on rate limits, 5xx and network failures.

        Retry strategy:
        - Exponential backoff: base, 2*base, 4*base ... (or Retry-After when given)
        - Non-retryable 4xx fail immediately

        Raises:
            ProviderFetchError: Tagged with this provider's name
        """
        attempt = 0
        while True:
            try:
                with provider_latency_histogram.labels(provider=self.name).time():
                    response = await client.request(method, url, **kwargs)
            except httpx.TimeoutException as e:
                failure = self._fail(f"timeout after {self.timeout}s")
                cause: Exception = e
                retry_after = None
            except httpx.RequestError as e:
                failure = self._fail(f"unreachable: {e.__class__.__name__}")
                cause = e
                retry_after = None
            else:
                if response.is_success:
                    return response
                failure = self._fail(
                    f"API error {response.status_code}: {self._error_message(response)}",
                    status_code=response.status_code,
                )
                cause = None
                retry_after = response.headers.get("Retry-After")
                if response.status_code not in RETRYABLE_STATUS:
                    raise failure

            attempt += 1
            if attempt > self.max_retries:
                if cause is not None:
                    raise failure from cause
                raise failure

            backoff = self.backoff_base * (2 ** (attempt - 1))
            if retry_after and retry_after.isdigit():
                backoff = max(backoff, float(retry_after))
            logger.warning(
                "Retrying provider request",
                extra={"provider": self.name, "attempt": attempt, "backoff_s": backoff, "error": failure.message},
            )
            await asyncio.sleep(backoff)

    def _decode(self, response: httpx.Response) -> Any:
        """JSON body with every non-integer number parsed as Decimal"""
        try:
            return json.loads(response.text, parse_float=Decimal)
        except ValueError as e:
            raise ProviderPayloadError(self.name, f"response is not valid JSON: {e}") from e

    def _decode_object(self, response: httpx.Response) -> Dict[str, Any]:
        payload = self._decode(response)
        if not isinstance(payload, dict):
            raise ProviderPayloadError(self.name, f"expected a JSON object, got {type(payload).__name__}")
        return payload

    def _records(self, payload: Any, key: str | None) -> List[Dict[str, Any]]:
        """Extract the record list from a page body"""
        records = payload if key is None else (payload.get(key) if isinstance(payload, Mapping) else None)
        if records is None:
            return []
        if not isinstance(records, list):
            raise ProviderPayloadError(self.name, f"expected a list under {key or 'body'!r}")
        return records

    async def paginate(self, fetch_page: PageFetcher, cancel_event: asyncio.Event | None = None) -> FetchResult:
        """
        Follow continuation tokens sequentially, bounded by max_pages.

        - Cancellation (cancel_event set) stops before the next request and
          returns the records so far tagged partial
        - Hitting max_pages returns the records so far tagged partial
        - A continuation token seen before is a hard error

        Raises:
            PaginationLoopError: On a repeated continuation token
        """
        result = FetchResult(provider=self.name)
        seen_tokens: set[str] = set()
        token: Optional[str] = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                result.partial = True
                result.partial_reason = "cancelled"
                break
            if result.pages >= self.max_pages:
                result.partial = True
                result.partial_reason = f"page cap of {self.max_pages} reached"
                logger.warning(
                    "Pagination stopped at page cap",
                    extra={"provider": self.name, "pages": result.pages, "records": len(result.records)},
                )
                break

            records, next_token = await fetch_page(token)
            result.records.extend(records)
            result.pages += 1
            provider_pages_counter.labels(provider=self.name).inc()

            if not next_token:
                break
            if next_token in seen_tokens or next_token == token:
                provider_fetch_failures_counter.labels(provider=self.name).inc()
                raise PaginationLoopError(self.name, f"continuation token repeated after page {result.pages}")
            seen_tokens.add(next_token)
            token = next_token

        if result.partial:
            record_partial_fetch(self.name, result.partial_reason or "")
        return result

    @abstractmethod
    async def fetch_raw(
        self,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> FetchResult:
        """Pull raw provider records created between start and end"""

    # -------------------------------------------------------------- normalize

    @abstractmethod
    def normalize(self, raw: Dict[str, Any]) -> Union[NormalizedOrder, NormalizedRefund]:
        """Convert one raw record to its canonical shape (pure)"""

    def expand(self, raw: Dict[str, Any]) -> List[CanonicalRecord]:
        """All canonical records carried by one raw record (orders with embedded refunds yield several)"""
        return [self.normalize(raw)]

    def count_chargebacks(self, raws: List[Dict[str, Any]], start: datetime, end: datetime) -> Optional[int]:
        """Disputed/charged-back payments dated within [start, end], or None when the provider cannot tell"""
        return None

    def normalize_batch(
        self,
        raws: List[Dict[str, Any]],
        expand: Callable[[Dict[str, Any]], List[CanonicalRecord]] | None = None,
    ) -> NormalizationReport:
        """
        Normalize a raw batch, skipping records that lack required fields.

        Skips are counted and logged; they never fail the batch. `expand`
        overrides the per-record conversion (e.g. for customer feeds).
        """
        expand = expand or self.expand
        report = NormalizationReport(provider=self.name)
        for raw in raws:
            try:
                records = expand(raw)
            except NormalizationError as e:
                self._skip(report, e.record_id, str(e))
                continue
            except (KeyError, TypeError, ValueError, AttributeError, ArithmeticError) as e:
                record_id = raw.get("id") if isinstance(raw, Mapping) else None
                self._skip(report, None if record_id is None else str(record_id), f"{type(e).__name__}: {e}")
                continue

            for record in records:
                if isinstance(record, NormalizedRefund):
                    report.refunds.append(record)
                elif isinstance(record, NormalizedCustomer):
                    report.customers.append(record)
                else:
                    report.orders.append(record)
        return report

    def _skip(self, report: NormalizationReport, record_id: str | None, reason: str) -> None:
        report.skipped += 1
        if record_id:
            report.skipped_ids.append(record_id)
        normalization_skipped_counter.labels(provider=self.name).inc()
        logger.warning(
            "Skipping malformed provider record",
            extra={"provider": self.name, "record_id": record_id, "reason": reason},
        )
