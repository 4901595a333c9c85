"""Ingredient recognition API — photo in, ingredient list out."""

from fastapi import APIRouter, Depends

from mealgen.api.v1.meals import attempts_to_response
from mealgen.core.config import settings
from mealgen.core.dependencies import get_orchestrator
from mealgen.core.exceptions import OrchestrationHTTPError
from mealgen.gateway.orchestrator import GenerationOrchestrator
from mealgen.gateway.types import GenerationRequest
from mealgen.schemas.generation import (
    ConsensusRecognizeRequest,
    ConsensusResponse,
    GenerationResponse,
    IngredientRecognizeRequest,
)

router = APIRouter(prefix="/ingredients", tags=["ingredients"])


@router.post("/recognize", response_model=GenerationResponse)
async def recognize_ingredients(
    body: IngredientRecognizeRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Recognize ingredients with the first provider that answers."""
    outcome = await orchestrator.generate(
        GenerationRequest.for_image(body.to_image_input()),
        preferred_provider_id=body.preferred_provider,
    )
    if not outcome.ok:
        raise OrchestrationHTTPError(outcome.error)

    return GenerationResponse(**outcome.result.to_dict(), attempts=attempts_to_response(outcome.attempts))


@router.post("/recognize/consensus", response_model=ConsensusResponse)
async def recognize_ingredients_consensus(
    body: ConsensusRecognizeRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Cross-validated recognition.

    Several providers are asked concurrently; an ingredient is kept only if
    at least two of the answering providers report it.
    """
    outcome = await orchestrator.recognize_with_consensus(
        GenerationRequest.for_image(body.to_image_input()),
        preferred_provider_id=body.preferred_provider,
        max_providers=body.max_providers or settings.consensus_max_providers,
    )
    if not outcome.ok:
        raise OrchestrationHTTPError(outcome.error)

    return ConsensusResponse(**outcome.consensus.to_dict(), attempts=attempts_to_response(outcome.attempts))
