from fastapi import Request

from mealgen.gateway.orchestrator import GenerationOrchestrator


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """The process-wide orchestrator created in the app lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        orchestrator = GenerationOrchestrator.from_settings()
        request.app.state.orchestrator = orchestrator
    return orchestrator
