"""Prompt builders shared by every provider adapter.

Adapters differ only in wire format; the text they send is built here so all
providers are asked for the same JSON shape the recovery pipeline expects.
"""

from __future__ import annotations

from mealgen.gateway.types import GenerationRequest, MealPlanInput, RequestKind

MEAL_TYPE_LABELS = {
    "breakfast": "breakfast",
    "lunch": "lunch",
    "dinner": "dinner",
    "snack": "light meal or snack",
}

DIFFICULTY_LABELS = {
    "easy": "easy (within 30 minutes)",
    "medium": "moderate (within 45 minutes)",
    "hard": "ambitious (60 minutes or more)",
}

INGREDIENT_CATEGORIES = ("vegetable", "meat", "fish", "grain", "dairy", "seasoning", "other")
FRESHNESS_LEVELS = ("fresh", "good", "need_to_use_soon", "overripe")

MEAL_SYSTEM_PROMPT = (
    "You are a professional home cook. Suggest practical, balanced meal plans. "
    "Always answer with JSON only."
)


def build_meal_prompt(meal_plan: MealPlanInput) -> str:
    """User prompt asking for 3-4 dishes in the ``{"meals": [...]}`` shape."""
    conditions = [
        f"- Ingredients to use: {', '.join(meal_plan.ingredients) or 'anything commonly available'}",
        f"- Meal type: {MEAL_TYPE_LABELS.get(meal_plan.meal_type, meal_plan.meal_type)}",
        f"- Servings: {meal_plan.servings}",
        f"- Cooking time: within {meal_plan.cooking_time_minutes} minutes",
        f"- Difficulty: {DIFFICULTY_LABELS.get(meal_plan.difficulty, meal_plan.difficulty)}",
        f"- Cuisine: {meal_plan.cuisine}",
    ]
    if meal_plan.dietary_restrictions:
        conditions.append(f"- Dietary restrictions: {', '.join(meal_plan.dietary_restrictions)}")
    if meal_plan.preferences:
        conditions.append(f"- Preferences: {', '.join(meal_plan.preferences)}")

    return f"""Propose a meal plan that satisfies these conditions.

## Conditions
{chr(10).join(conditions)}

## Output format
Return 3-4 dishes as JSON in exactly this shape:

```json
{{
  "meals": [
    {{
      "name": "Dish name",
      "ingredients": ["ingredient 1", "ingredient 2"],
      "instructions": ["Step 1: ...", "Step 2: ..."],
      "cookingTime": 30,
      "servings": {meal_plan.servings},
      "difficulty": "easy",
      "category": "main",
      "tips": ["tip 1"]
    }}
  ]
}}
```

## Notes
1. Make use of the listed ingredients.
2. Keep the steps concrete and the cooking times realistic.
3. Balance main dishes, sides and soups.
4. Output valid JSON only."""


def build_image_prompt() -> str:
    """User prompt asking a vision model for the ``{"ingredients": [...]}`` shape."""
    return f"""Identify the food ingredients visible in this image and answer in this JSON shape:

{{
  "ingredients": [
    {{
      "name": "ingredient name",
      "confidence": 0.95,
      "category": "vegetable",
      "quantity": "2 pieces",
      "freshness": "fresh"
    }}
  ],
  "confidence": 0.90
}}

category is one of: {", ".join(INGREDIENT_CATEGORIES)}
freshness is one of: {", ".join(FRESHNESS_LEVELS)}

If no ingredient can be recognized return an empty array. Answer with JSON only."""


def build_prompt(request: GenerationRequest) -> str:
    if request.kind == RequestKind.IMAGE_RECOGNITION:
        return build_image_prompt()
    return build_meal_prompt(request.meal_plan)


def system_prompt_for(request: GenerationRequest) -> str:
    if request.kind == RequestKind.CONTENT_GENERATION:
        return MEAL_SYSTEM_PROMPT
    return ""
