# Ingredient documents live at bakeries/{bakeryId}/ingredients/{ingredientId}.
# usedInRecipes is a back-reference maintained by the recipe workflows only,
# it is never accepted from clients.
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from bakery_api.core.documents import DocumentSnapshot
from bakery_api.models.common import Timestamp, utc_now
from bakery_api.models.recipe import RecipeRepricingResult

class IngredientBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Name of the ingredient")
    unit: str = Field(..., min_length=1, max_length=50, description="Unit of measure (e.g., g, ml, unit)")
    description: Optional[str] = Field(None, max_length=1024, description="Detailed description of the ingredient")
    category: Optional[str] = Field(None, max_length=255, description="Category of the ingredient")
    cost_per_unit: float = Field(0, ge=0, alias='costPerUnit', description="Cost of one unit")
    currency: str = Field('COP', min_length=3, max_length=3)
    current_stock: float = Field(0, ge=0, alias='currentStock')
    allergens: List[str] = Field(default_factory=list)
    storage_temp: Optional[str] = Field(None, alias='storageTemp')
    is_active: bool = Field(True, alias='isActive')
    is_discontinued: bool = Field(False, alias='isDiscontinued')
    notes: Optional[str] = None

    class Config:
        populate_by_name = True

class IngredientCreate(IngredientBase):
    pass

class IngredientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    unit: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=1024)
    category: Optional[str] = Field(None, max_length=255)
    cost_per_unit: Optional[float] = Field(None, ge=0, alias='costPerUnit')
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    current_stock: Optional[float] = Field(None, ge=0, alias='currentStock')
    allergens: Optional[List[str]] = None
    storage_temp: Optional[str] = Field(None, alias='storageTemp')
    is_active: Optional[bool] = Field(None, alias='isActive')
    is_discontinued: Optional[bool] = Field(None, alias='isDiscontinued')
    notes: Optional[str] = None

    class Config:
        populate_by_name = True

class StockUpdate(BaseModel):
    """Either set the stock to an absolute value or adjust it by a delta"""
    current_stock: Optional[float] = Field(None, ge=0, alias='currentStock')
    adjustment: Optional[float] = None

    class Config:
        populate_by_name = True

    @model_validator(mode='after')
    def _exactly_one(self):
        if (self.current_stock is None) == (self.adjustment is None):
            raise ValueError("Provide exactly one of currentStock or adjustment")
        return self

class Ingredient(IngredientBase):
    id: str
    bakery_id: str = Field(alias='bakeryId')
    used_in_recipes: List[str] = Field(default_factory=list, alias='usedInRecipes')
    created_at: Timestamp = Field(default_factory=utc_now, alias='createdAt')
    updated_at: Timestamp = Field(default_factory=utc_now, alias='updatedAt')

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude={'id'})

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> "Ingredient":
        return cls.model_validate({**snapshot.data, 'id': snapshot.id})

class IngredientResponse(BaseModel):
    success: bool = True
    data: Ingredient

class IngredientUpdateResponse(BaseModel):
    success: bool = True
    data: Ingredient
    recipe_updates: List[RecipeRepricingResult] = Field(default_factory=list, alias='recipeUpdates')

    class Config:
        populate_by_name = True

class IngredientsListResponse(BaseModel):
    success: bool = True
    total: int
    data: List[Ingredient]
    page: int = 1
    limit: int = 50
