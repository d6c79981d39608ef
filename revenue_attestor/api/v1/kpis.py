"""POST /v1/kpis - trailing-window KPIs for one provider connection"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request

from revenue_attestor.api.dependencies import get_attestation_service, get_provider_factory, get_request_id
from revenue_attestor.api.v1.schemas import KPIRequest, KPIResponse, ProviderConnection
from revenue_attestor.domain.exceptions import (
    InvalidKPIInputError,
    ProviderFetchError,
    ProviderPayloadError,
    UnknownProviderError,
)
from revenue_attestor.infrastructure.providers.base import ProviderClient
from revenue_attestor.services.attestation import AttestationService

router = APIRouter()

logger = logging.getLogger(__name__)


def provider_error_status(error: ProviderFetchError) -> int:
    """Rate limiting is a temporary unavailability; anything else is a bad upstream"""
    return 503 if error.rate_limited else 502


@router.post("/kpis", response_model=KPIResponse)
async def get_kpis(
    request_body: KPIRequest,
    request: Request,
    provider_factory: Callable[[ProviderConnection], ProviderClient] = Depends(get_provider_factory),
    service: AttestationService = Depends(get_attestation_service),
):
    """
    Compute KPIs over the trailing window for one provider.

    Flow:
    1. Build the provider adapter from the connection details
    2. Fetch and normalize the window (and the prior window for growth)
    3. Aggregate KPIs
    """
    request_id = get_request_id(request)

    try:
        client = provider_factory(request_body)
        outcome = await service.compute(
            [(client, request_body.credential)],
            timezone=request_body.timezone,
            window_days=request_body.window_days,
            include_growth=request_body.include_growth,
        )
        return KPIResponse.from_result(outcome.kpis, outcome.feeds)

    except UnknownProviderError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    except ProviderFetchError as e:
        logger.error(f"Provider fetch failed: {e}", extra={"request_id": request_id, "provider": e.provider})
        raise HTTPException(status_code=provider_error_status(e), detail=str(e)) from e

    except ProviderPayloadError as e:
        logger.error(f"Provider payload unusable: {e}", extra={"request_id": request_id, "provider": e.provider})
        raise HTTPException(status_code=502, detail=str(e)) from e

    except InvalidKPIInputError as e:
        logger.warning(f"Invalid KPI input: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e)) from e
