from datetime import datetime
from fastapi import APIRouter, Depends, Query
from typing import Optional
from bakery_api.core.dependencies import get_recipe_service, require_bakery_staff
from bakery_api.core.middleware import SessionContext
from bakery_api.models.recipe import (
    RecipeCreate,
    RecipeUpdate,
    ScaleRecipeRequest,
    RecipeResponse,
    RecipesListResponse,
    RecipeHistoryResponse,
)
from bakery_api.services.recipes_service import RecipeService

router = APIRouter()

@router.post("", response_model=RecipeResponse, status_code=201)
async def create_recipe_endpoint(
    bakery_id: str,
    data: RecipeCreate,
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    """
    Create a recipe at version 1, snapshotting the referenced ingredients
    """
    recipe = await service.create_recipe(bakery_id, data)
    return RecipeResponse(data=recipe)

@router.get("", response_model=RecipesListResponse)
async def list_recipes_endpoint(
    bakery_id: str,
    is_active: Optional[bool] = Query(default=None, alias="isActive", description="Filter by active flag"),
    category: Optional[str] = Query(default=None, description="Filter by recipe category"),
    page: int = Query(default=1, ge=1, description="Page number"),
    limit: int = Query(default=50, ge=1, le=250, description="Items per page"),
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    recipes, total = await service.list_recipes(bakery_id, is_active=is_active, category=category, page=page, limit=limit)
    return RecipesListResponse(total=total, data=recipes, page=page, limit=limit)

@router.get("/{recipe_id}", response_model=RecipeResponse)
async def get_recipe_endpoint(
    bakery_id: str,
    recipe_id: str,
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    recipe = await service.get_recipe(bakery_id, recipe_id)
    return RecipeResponse(data=recipe)

@router.patch("/{recipe_id}", response_model=RecipeResponse)
async def update_recipe_endpoint(
    bakery_id: str,
    recipe_id: str,
    update: RecipeUpdate,
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    """
    Partial update; production relevant changes bump the version and archive the previous state
    """
    recipe = await service.update_recipe(bakery_id, recipe_id, update)
    return RecipeResponse(data=recipe)

@router.delete("/{recipe_id}")
async def delete_recipe_endpoint(
    bakery_id: str,
    recipe_id: str,
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    await service.delete_recipe(bakery_id, recipe_id)
    return {"success": True, "message": "Recipe deleted successfully"}

@router.patch("/{recipe_id}/scale", response_model=RecipeResponse)
async def scale_recipe_endpoint(
    bakery_id: str,
    recipe_id: str,
    body: ScaleRecipeRequest,
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    recipe = await service.scale_recipe(bakery_id, recipe_id, body.factor)
    return RecipeResponse(data=recipe)

@router.get("/{recipe_id}/history", response_model=RecipeHistoryResponse)
async def recipe_history_endpoint(
    bakery_id: str,
    recipe_id: str,
    at: Optional[datetime] = Query(default=None, description="Return only the version archived at or before this instant"),
    session: SessionContext = Depends(require_bakery_staff),
    service: RecipeService = Depends(get_recipe_service)
):
    """
    Archived versions, newest first
    """
    if at is not None:
        entry = await service.get_version_at(bakery_id, recipe_id, at)
        return RecipeHistoryResponse(data=[entry] if entry else [])
    entries = await service.list_history(bakery_id, recipe_id)
    return RecipeHistoryResponse(data=entries)
