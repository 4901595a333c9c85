import re

from pydantic import BaseModel, Field

from mealgen.gateway.types import ImageInput, MealPlanInput

_DATA_URL = re.compile(r"^data:(?P<media>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


# --- Requests ---


class MealGenerateRequest(BaseModel):
    ingredients: list[str] = Field(default_factory=list, max_length=50)
    servings: int = Field(2, ge=1, le=20)
    cooking_time: int = Field(45, ge=5, le=480, description="Minutes")
    meal_type: str = Field("dinner", pattern=r"^(breakfast|lunch|dinner|snack)$")
    dietary_restrictions: list[str] = Field(default_factory=list, max_length=20)
    preferences: list[str] = Field(default_factory=list, max_length=20)
    difficulty: str = Field("medium", pattern=r"^(easy|medium|hard)$")
    cuisine: str = Field("any", max_length=50)
    preferred_provider: str | None = Field(None, max_length=50)

    def to_meal_plan(self) -> MealPlanInput:
        return MealPlanInput(
            ingredients=tuple(i.strip() for i in self.ingredients if i.strip()),
            servings=self.servings,
            cooking_time_minutes=self.cooking_time,
            meal_type=self.meal_type,
            dietary_restrictions=tuple(self.dietary_restrictions),
            preferences=tuple(self.preferences),
            difficulty=self.difficulty,
            cuisine=self.cuisine,
        )


class IngredientRecognizeRequest(BaseModel):
    image: str = Field(min_length=1, description="Base64 image data or a data: URL")
    media_type: str = Field("image/jpeg", pattern=r"^image/[\w+.-]+$")
    preferred_provider: str | None = Field(None, max_length=50)

    def to_image_input(self) -> ImageInput:
        """Accept either bare base64 or a ``data:<type>;base64,`` URL."""
        m = _DATA_URL.match(self.image.strip())
        if m:
            return ImageInput(image_base64=m.group("data"), media_type=m.group("media"))
        return ImageInput(image_base64=self.image.strip(), media_type=self.media_type)


class ConsensusRecognizeRequest(IngredientRecognizeRequest):
    max_providers: int | None = Field(None, ge=1, le=6)


# --- Responses ---


class AttemptResponse(BaseModel):
    provider: str
    outcome: str
    failure: str | None = None
    latency_ms: int = 0


class GenerationResponse(BaseModel):
    kind: str
    items: list[dict]
    confidence: float
    provider: str
    stage: str
    latency_ms: int
    attempts: list[AttemptResponse] = []


class ConsensusResponse(BaseModel):
    kind: str
    items: list[dict]
    confidence: float
    source_count: int
    providers: list[str]
    votes: dict[str, int]
    attempts: list[AttemptResponse] = []


class RateLimitEntry(BaseModel):
    provider: str
    remaining_seconds: float


class ProviderStatusResponse(BaseModel):
    available: dict[str, list[str]]
    rate_limited: list[RateLimitEntry]


class RateLimitResetResponse(BaseModel):
    cleared: int


class ProviderCheckResponse(BaseModel):
    provider: str
    ok: bool
    outcome: str = Field(..., description="ok, a failure class, or no-credentials")
    latency_ms: int
    detail: str = ""
