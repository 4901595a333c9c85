from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from mealgen.core.config import settings

# Override settings for tests
settings.app_env = "test"
settings.log_json = False

from mealgen.gateway.types import GenerationRequest, ImageInput, MealPlanInput  # noqa: E402
from mealgen.main import app  # noqa: E402
from tests.fakes import FakeClock  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def meal_request() -> GenerationRequest:
    return GenerationRequest.for_meal_plan(MealPlanInput(ingredients=("egg", "tomato", "rice")))


@pytest.fixture
def image_request() -> GenerationRequest:
    return GenerationRequest.for_image(ImageInput(image_base64="aGVsbG8=", media_type="image/png"))


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.state.orchestrator = None
