"""Meal plan generation API."""

from fastapi import APIRouter, Depends

from mealgen.core.dependencies import get_orchestrator
from mealgen.core.exceptions import OrchestrationHTTPError
from mealgen.gateway.orchestrator import GenerationOrchestrator
from mealgen.gateway.types import AttemptRecord, GenerationRequest
from mealgen.schemas.generation import AttemptResponse, GenerationResponse, MealGenerateRequest

router = APIRouter(prefix="/meals", tags=["meals"])


def attempts_to_response(attempts: list[AttemptRecord]) -> list[AttemptResponse]:
    """Attempt trail for the client; transport details stay in the logs."""
    return [
        AttemptResponse(
            provider=a.provider_id,
            outcome=a.outcome.value,
            failure=a.failure.value if a.failure else None,
            latency_ms=a.latency_ms,
        )
        for a in attempts
    ]


@router.post("/generate", response_model=GenerationResponse)
async def generate_meals(
    body: MealGenerateRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """Suggest 3-4 dishes from the given ingredients and conditions.

    Providers are tried in priority order (``preferred_provider`` first);
    the response names the provider that answered and the recovery stage
    that produced the structured meals.
    """
    outcome = await orchestrator.generate(
        GenerationRequest.for_meal_plan(body.to_meal_plan()),
        preferred_provider_id=body.preferred_provider,
    )
    if not outcome.ok:
        raise OrchestrationHTTPError(outcome.error)

    return GenerationResponse(**outcome.result.to_dict(), attempts=attempts_to_response(outcome.attempts))
