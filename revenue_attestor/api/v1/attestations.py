"""POST /v1/attestations - build and hash; POST /v1/attestations/verify - recompute and compare"""

import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request

from revenue_attestor.api.dependencies import get_attestation_service, get_provider_factory, get_request_id
from revenue_attestor.api.v1.kpis import provider_error_status
from revenue_attestor.api.v1.schemas import (
    AttestationRequest,
    AttestationResponse,
    FeedSummary,
    ProviderConnection,
    VerifyRequest,
    VerifyResponse,
)
from revenue_attestor.attestation.canonical import hash_attestation, verify_attestation_hash
from revenue_attestor.domain.exceptions import (
    AttestationValidationError,
    InvalidKPIInputError,
    ProviderFetchError,
    ProviderPayloadError,
    UnknownProviderError,
)
from revenue_attestor.infrastructure.providers.base import ProviderClient
from revenue_attestor.services.attestation import AttestationService

router = APIRouter()

logger = logging.getLogger(__name__)


@router.post("/attestations", response_model=AttestationResponse)
async def create_attestation(
    request_body: AttestationRequest,
    request: Request,
    provider_factory: Callable[[ProviderConnection], ProviderClient] = Depends(get_provider_factory),
    service: AttestationService = Depends(get_attestation_service),
):
    """
    Build a revenue attestation ready for signing.

    The returned `hash` is what the merchant signs; `canonical` is the exact
    string it was computed over, so verifiers can check it byte for byte.
    """
    request_id = get_request_id(request)

    try:
        client = provider_factory(request_body)
        outcome = await service.attest(
            [(client, request_body.credential)],
            merchant_id=request_body.merchant_id,
            platform_id=request_body.platform_id,
            previous_cid=request_body.previous_cid,
            timezone=request_body.timezone,
            window_days=request_body.window_days,
            include_growth=request_body.include_growth,
            request_id=request_id,
        )
        return AttestationResponse(
            attestation=outcome.attestation.to_document(),
            hash=outcome.hash,
            canonical=outcome.canonical,
            feeds=[FeedSummary.from_feed(f) for f in outcome.feeds],
        )

    except UnknownProviderError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    except ProviderFetchError as e:
        logger.error(f"Provider fetch failed: {e}", extra={"request_id": request_id, "provider": e.provider})
        raise HTTPException(status_code=provider_error_status(e), detail=str(e)) from e

    except ProviderPayloadError as e:
        logger.error(f"Provider payload unusable: {e}", extra={"request_id": request_id, "provider": e.provider})
        raise HTTPException(status_code=502, detail=str(e)) from e

    except (InvalidKPIInputError, AttestationValidationError) as e:
        logger.warning(f"Attestation rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("/attestations/verify", response_model=VerifyResponse)
def verify_attestation(request_body: VerifyRequest, request: Request):
    """Recompute the canonical hash of a received attestation and compare it to the expected one"""
    try:
        actual = hash_attestation(request_body.attestation)
    except AttestationValidationError as e:
        logger.warning(f"Unverifiable attestation: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=422, detail=str(e)) from e

    return VerifyResponse(
        valid=verify_attestation_hash(request_body.attestation, request_body.expected_hash),
        hash=actual,
    )
