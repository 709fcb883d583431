from fastapi import APIRouter, Depends, Query
from typing import Optional
from bakery_api.core.dependencies import get_ingredient_service, require_bakery_staff
from bakery_api.core.middleware import SessionContext
from bakery_api.models.ingredient import (
    IngredientCreate,
    IngredientUpdate,
    StockUpdate,
    IngredientResponse,
    IngredientUpdateResponse,
    IngredientsListResponse,
)
from bakery_api.services.ingredients_service import IngredientService

router = APIRouter()

@router.post("", response_model=IngredientResponse, status_code=201)
async def create_ingredient_endpoint(
    bakery_id: str,
    data: IngredientCreate,
    session: SessionContext = Depends(require_bakery_staff),
    service: IngredientService = Depends(get_ingredient_service)
):
    ingredient = await service.create_ingredient(bakery_id, data)
    return IngredientResponse(data=ingredient)

@router.get("", response_model=IngredientsListResponse)
async def get_ingredients_endpoint(
    bakery_id: str,
    page: int = Query(default=1, ge=1, description="Page number"),
    limit: int = Query(default=50, ge=1, le=250, description="Items per page"),
    category: Optional[str] = Query(default=None, description="Filter by ingredient category"),
    is_active: Optional[bool] = Query(default=None, alias="isActive", description="Filter by active flag"),
    session: SessionContext = Depends(require_bakery_staff),
    service: IngredientService = Depends(get_ingredient_service)
):
    """
    Get ingredients list of one bakery
    """
    ingredients, total = await service.list_ingredients(
        bakery_id, category=category, is_active=is_active, page=page, limit=limit
    )
    return IngredientsListResponse(total=total, data=ingredients, page=page, limit=limit)

@router.get("/{ingredient_id}", response_model=IngredientResponse)
async def get_ingredient_endpoint(
    bakery_id: str,
    ingredient_id: str,
    session: SessionContext = Depends(require_bakery_staff),
    service: IngredientService = Depends(get_ingredient_service)
):
    ingredient = await service.get_ingredient(bakery_id, ingredient_id)
    return IngredientResponse(data=ingredient)

@router.patch("/{ingredient_id}", response_model=IngredientUpdateResponse)
async def update_ingredient_endpoint(
    bakery_id: str,
    ingredient_id: str,
    update: IngredientUpdate,
    session: SessionContext = Depends(require_bakery_staff),
    service: IngredientService = Depends(get_ingredient_service)
):
    """
    Update an ingredient; a cost change re-prices every recipe using it
    """
    ingredient, recipe_updates = await service.update_ingredient(bakery_id, ingredient_id, update)
    return IngredientUpdateResponse(data=ingredient, recipe_updates=recipe_updates)

@router.patch("/{ingredient_id}/stock", response_model=IngredientResponse)
async def update_stock_endpoint(
    bakery_id: str,
    ingredient_id: str,
    stock: StockUpdate,
    session: SessionContext = Depends(require_bakery_staff),
    service: IngredientService = Depends(get_ingredient_service)
):
    ingredient = await service.adjust_stock(bakery_id, ingredient_id, stock)
    return IngredientResponse(data=ingredient)

@router.delete("/{ingredient_id}")
async def delete_ingredient_endpoint(
    bakery_id: str,
    ingredient_id: str,
    session: SessionContext = Depends(require_bakery_staff),
    service: IngredientService = Depends(get_ingredient_service)
):
    await service.delete_ingredient(bakery_id, ingredient_id)
    return {"success": True, "message": "Ingredient deleted successfully"}
