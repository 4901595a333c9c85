"""Provider availability, cooldown status and connection checks."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from mealgen.core.dependencies import get_orchestrator
from mealgen.gateway.orchestrator import GenerationOrchestrator
from mealgen.schemas.generation import ProviderCheckResponse, ProviderStatusResponse, RateLimitResetResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["providers"])


@router.get("/status", response_model=ProviderStatusResponse)
async def provider_status(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    """Providers usable right now per request kind, plus those cooling down."""
    return orchestrator.status()


@router.post("/rate-limits/reset", response_model=RateLimitResetResponse)
async def reset_rate_limits(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    cleared = orchestrator.reset_rate_limits()
    logger.info("Rate limits reset via API (%d cleared)", cleared)
    return RateLimitResetResponse(cleared=cleared)


@router.post("/test", response_model=list[ProviderCheckResponse])
async def check_all_providers(orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    """Make one small call to every configured provider, one after another."""
    checks = await orchestrator.check_all_providers()
    return [check.to_dict() for check in checks]


@router.post("/{provider_id}/test", response_model=ProviderCheckResponse)
async def check_provider(provider_id: str, orchestrator: GenerationOrchestrator = Depends(get_orchestrator)):
    try:
        check = await orchestrator.check_provider(provider_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider_id}")
    return check.to_dict()
