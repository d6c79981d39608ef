"""Attestation pipeline - fetch, normalize, aggregate, build and hash"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Callable, List, Optional, Sequence, Tuple

from revenue_attestor.attestation.builder import build_attestation
from revenue_attestor.attestation.canonical import hash_attestation, serialize_attestation
from revenue_attestor.attestation.schema import AttestationV1
from revenue_attestor.config import settings
from revenue_attestor.domain.exceptions import InvalidKPIInputError
from revenue_attestor.domain.kpi import compute_kpis
from revenue_attestor.domain.models import KPIResult, NormalizationReport
from revenue_attestor.infrastructure.observability.logging import log_attestation, log_fetch
from revenue_attestor.infrastructure.observability.metrics import attestations_built_counter
from revenue_attestor.infrastructure.providers.base import ProviderClient
from revenue_attestor.infrastructure.providers.shopify import ShopifyClient
from revenue_attestor.utils.date_utils import parse_timestamp, resolve_timezone, subtract_calendar_days

logger = logging.getLogger(__name__)

# (client, credential) pairs; each client is bound to one merchant connection
Source = Tuple[ProviderClient, str]


@dataclass
class ProviderFeed:
    """One provider's normalized records plus fetch bookkeeping"""

    provider: str
    report: NormalizationReport
    records: int = 0
    pages: int = 0
    partial: bool = False
    partial_reason: Optional[str] = None
    chargebacks: Optional[int] = None


@dataclass
class KPIOutcome:
    kpis: KPIResult
    feeds: List[ProviderFeed] = field(default_factory=list)


@dataclass
class AttestationOutcome:
    """Built attestation with its canonical form and hash"""

    kpis: KPIResult
    attestation: AttestationV1
    canonical: str
    hash: str
    feeds: List[ProviderFeed] = field(default_factory=list)


def _merge_chargebacks(feeds: Sequence[ProviderFeed]) -> Optional[int]:
    counts = [f.chargebacks for f in feeds if f.chargebacks is not None]
    return sum(counts) if counts else None


class AttestationService:
    """
    Orchestrates provider fetches and the pure KPI/attestation functions.

    All network I/O happens here and in the adapters; everything downstream
    of normalization is deterministic given `now` and `built_at`, or given
    an injected clock.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(dt_timezone.utc))

    async def collect_feed(
        self,
        client: ProviderClient,
        credential: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
        window_start: datetime | None = None,
    ) -> ProviderFeed:
        """
        Fetch and normalize one provider's records for [start, end].

        Chargebacks are counted over [window_start, end] only; the fetch itself
        may reach back further for the prior window.

        Raises:
            ProviderFetchError: If the provider cannot be read
            ProviderPayloadError: If the provider returns an unusable body
        """
        started = time.time()
        fetched = await client.fetch_raw(credential, start, end, cancel_event)
        report = client.normalize_batch(fetched.records)
        records = len(fetched.records)
        pages = fetched.pages
        partial = fetched.partial
        partial_reason = fetched.partial_reason

        # Shopify exposes lifetime order counts on customers, which retention metrics need
        if isinstance(client, ShopifyClient) and not partial:
            customers = await client.fetch_customers(credential, start, end, cancel_event)
            report.merge(client.normalize_batch(customers.records, expand=client.expand_customer))
            records += len(customers.records)
            pages += customers.pages
            partial = customers.partial
            partial_reason = customers.partial_reason

        duration_ms = (time.time() - started) * 1000
        log_fetch(client.name, records, pages, partial, report.skipped, duration_ms)

        return ProviderFeed(
            provider=client.name,
            report=report,
            records=records,
            pages=pages,
            partial=partial,
            partial_reason=partial_reason,
            chargebacks=client.count_chargebacks(fetched.records, window_start or start, end),
        )

    async def collect(
        self,
        sources: Sequence[Source],
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
        window_start: datetime | None = None,
    ) -> List[ProviderFeed]:
        """Fetch every source concurrently; the first failure propagates"""
        return list(
            await asyncio.gather(
                *(
                    self.collect_feed(client, credential, start, end, cancel_event, window_start)
                    for client, credential in sources
                )
            )
        )

    async def compute(
        self,
        sources: Sequence[Source],
        timezone: str | None = None,
        window_days: int | None = None,
        include_growth: bool = True,
        now: datetime | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> KPIOutcome:
        """
        Collect every source and aggregate one KPI snapshot.

        With growth enabled the fetch reaches back two windows so the prior
        period is available to the engine.

        Raises:
            InvalidKPIInputError: On an unknown timezone or non-positive window
            ProviderFetchError: If any provider cannot be read
        """
        timezone = timezone or settings.default_timezone
        window_days = settings.default_window_days if window_days is None else window_days
        if isinstance(window_days, bool) or not isinstance(window_days, int) or window_days <= 0:
            raise InvalidKPIInputError(f"window_days must be a positive integer, got {window_days!r}")
        try:
            tz = resolve_timezone(timezone)
        except ValueError as e:
            raise InvalidKPIInputError(str(e)) from e

        now = (self._clock() if now is None else parse_timestamp(now)).astimezone(tz)
        window_start = subtract_calendar_days(now, window_days)
        lookback = window_days * 2 if include_growth else window_days
        feeds = await self.collect(sources, subtract_calendar_days(now, lookback), now, cancel_event, window_start)

        combined = NormalizationReport(provider="+".join(f.provider for f in feeds))
        for feed in feeds:
            combined.merge(feed.report)

        kpis = compute_kpis(
            combined.orders,
            combined.refunds,
            combined.customers or None,
            timezone=timezone,
            window_days=window_days,
            prior_window_days=window_days if include_growth else None,
            now=now,
            chargebacks=_merge_chargebacks(feeds),
        )
        return KPIOutcome(kpis=kpis, feeds=feeds)

    async def attest(
        self,
        sources: Sequence[Source],
        merchant_id: str,
        platform_id: str | None = None,
        previous_cid: str | None = None,
        timezone: str | None = None,
        window_days: int | None = None,
        include_growth: bool = True,
        now: datetime | None = None,
        built_at: datetime | None = None,
        request_id: str = "unknown",
        cancel_event: asyncio.Event | None = None,
    ) -> AttestationOutcome:
        """
        Produce a hashed attestation for the merchant's trailing window.

        Flow:
        1. Fetch and normalize every source concurrently
        2. Compute KPIs for the window (and the prior window for growth)
        3. Build the attestation document
        4. Serialize canonically and hash

        Raises:
            InvalidKPIInputError: On an unknown timezone or non-positive window
            ProviderFetchError: If any provider cannot be read
            AttestationValidationError: If the KPIs cannot be rendered
        """
        started = time.time()
        outcome = await self.compute(sources, timezone, window_days, include_growth, now, cancel_event)

        partial = [f.provider for f in outcome.feeds if f.partial]
        if partial:
            logger.warning(
                "Attesting over a partial fetch",
                extra={"request_id": request_id, "providers": partial},
            )

        attestation = build_attestation(
            outcome.kpis,
            merchant_id,
            previous_cid=previous_cid,
            platform_id=platform_id,
            built_at=built_at or self._clock(),
        )
        canonical = serialize_attestation(attestation)
        attestation_hash = hash_attestation(attestation)

        for feed in outcome.feeds:
            attestations_built_counter.labels(provider=feed.provider).inc()
        duration_ms = (time.time() - started) * 1000
        log_attestation(
            request_id,
            merchant_id,
            attestation_hash,
            attestation.metrics.net_sales,
            attestation.merchant.currency,
            duration_ms,
        )

        return AttestationOutcome(
            kpis=outcome.kpis,
            attestation=attestation,
            canonical=canonical,
            hash=attestation_hash,
            feeds=outcome.feeds,
        )
