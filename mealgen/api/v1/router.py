from fastapi import APIRouter

from mealgen.api.v1.ingredients import router as ingredients_router
from mealgen.api.v1.meals import router as meals_router
from mealgen.api.v1.providers import router as providers_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(meals_router)
api_v1_router.include_router(ingredients_router)
api_v1_router.include_router(providers_router)
