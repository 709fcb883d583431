"""
Recipe data model.

A recipe owns an ordered list of RecipeIngredient entries. Each entry keeps a
snapshot of the ingredient's name, unit, allergens and costPerUnit taken when
the ingredient was associated (or last re-priced); it does not follow later
changes of the Ingredient document. Stale costs are refreshed only through
ingredient cost propagation or an explicit recipe update.

totalCost and totalTime are derived every time a Recipe is built, so any
state produced through the model carries consistent totals.
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any, Set
from bakery_api.core.documents import DocumentSnapshot
from bakery_api.models.common import Timestamp, utc_now

class RecipeIngredient(BaseModel):
    ingredient_id: str = Field(..., min_length=1, alias='ingredientId')
    name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    base_quantity: Optional[float] = Field(None, gt=0, alias='baseQuantity', description="Quantity before any scaling")
    unit: Optional[str] = None
    cost_per_unit: float = Field(..., ge=0, alias='costPerUnit')
    notes: Optional[str] = ""
    allergens: List[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    @model_validator(mode='after')
    def _default_base_quantity(self):
        if self.base_quantity is None:
            self.base_quantity = self.quantity
        return self

    @property
    def cost(self) -> float:
        return self.quantity * self.cost_per_unit

    def scaled(self, factor: float) -> "RecipeIngredient":
        return self.model_copy(update={'quantity': self.base_quantity * factor})

class RecipeIngredientInput(BaseModel):
    """Ingredient entry as sent by clients; completeness is checked by the recipe service"""
    ingredient_id: Optional[str] = Field(None, alias='ingredientId')
    name: Optional[str] = None
    quantity: Optional[float] = None
    base_quantity: Optional[float] = Field(None, alias='baseQuantity')
    unit: Optional[str] = None
    cost_per_unit: Optional[float] = Field(None, alias='costPerUnit')
    notes: Optional[str] = None
    allergens: Optional[List[str]] = None

    class Config:
        populate_by_name = True

class RecipeBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2048)
    category: Optional[str] = Field(None, max_length=255)
    product_ids: List[str] = Field(default_factory=list, alias='productIds')
    steps: List[str] = Field(default_factory=list)
    preparation_time: float = Field(0, ge=0, alias='preparationTime', description="Minutes")
    baking_time: Optional[float] = Field(None, ge=0, alias='bakingTime', description="Minutes")
    baking_temp: Optional[float] = Field(None, alias='bakingTemp', description="Degrees")
    labor_cost: float = Field(0, ge=0, alias='laborCost')
    overhead_cost: float = Field(0, ge=0, alias='overheadCost')
    is_active: bool = Field(True, alias='isActive')
    notes: Optional[str] = None

    class Config:
        populate_by_name = True

class RecipeCreate(RecipeBase):
    ingredients: List[RecipeIngredientInput] = Field(default_factory=list)

class RecipeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2048)
    category: Optional[str] = Field(None, max_length=255)
    product_ids: Optional[List[str]] = Field(None, alias='productIds')
    ingredients: Optional[List[RecipeIngredientInput]] = None
    steps: Optional[List[str]] = None
    preparation_time: Optional[float] = Field(None, ge=0, alias='preparationTime')
    baking_time: Optional[float] = Field(None, ge=0, alias='bakingTime')
    baking_temp: Optional[float] = Field(None, alias='bakingTemp')
    labor_cost: Optional[float] = Field(None, ge=0, alias='laborCost')
    overhead_cost: Optional[float] = Field(None, ge=0, alias='overheadCost')
    is_active: Optional[bool] = Field(None, alias='isActive')
    notes: Optional[str] = None

    class Config:
        populate_by_name = True

class ScaleRecipeRequest(BaseModel):
    factor: float = Field(..., description="Multiplier applied to every base quantity")

class Recipe(RecipeBase):
    id: Optional[str] = None
    bakery_id: str = Field(..., alias='bakeryId')
    version: int = Field(1, ge=1)
    ingredients: List[RecipeIngredient] = Field(default_factory=list)
    total_time: float = Field(0, alias='totalTime')
    total_cost: float = Field(0, alias='totalCost')
    created_at: Timestamp = Field(default_factory=utc_now, alias='createdAt')
    updated_at: Timestamp = Field(default_factory=utc_now, alias='updatedAt')

    @model_validator(mode='after')
    def _derive_totals(self):
        self.total_cost = self.ingredients_cost + self.labor_cost + self.overhead_cost
        self.total_time = self.preparation_time + (self.baking_time or 0)
        return self

    @property
    def ingredients_cost(self) -> float:
        return sum(ingredient.cost for ingredient in self.ingredients)

    @property
    def ingredient_ids(self) -> Set[str]:
        return {ingredient.ingredient_id for ingredient in self.ingredients}

    def allergens(self) -> List[str]:
        seen: Dict[str, None] = {}
        for ingredient in self.ingredients:
            for allergen in ingredient.allergens:
                seen.setdefault(allergen, None)
        return list(seen)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude={'id'})

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> "Recipe":
        return cls.model_validate({**snapshot.data, 'id': snapshot.id})

class RecipeVersionHistoryEntry(BaseModel):
    """Immutable copy of the production relevant fields of a superseded version"""
    id: Optional[str] = None
    version: int = Field(..., ge=1)
    ingredients: List[RecipeIngredient] = Field(default_factory=list)
    steps: Optional[List[str]] = None
    baking_temp: Optional[float] = Field(None, alias='bakingTemp')
    baking_time: Optional[float] = Field(None, alias='bakingTime')
    timestamp: Timestamp = Field(default_factory=utc_now)

    class Config:
        populate_by_name = True

    @classmethod
    def capture(cls, recipe: Recipe) -> "RecipeVersionHistoryEntry":
        return cls(
            version=recipe.version,
            ingredients=[ingredient.model_copy(deep=True) for ingredient in recipe.ingredients],
            steps=list(recipe.steps) or None,
            baking_temp=recipe.baking_temp,
            baking_time=recipe.baking_time,
        )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True, exclude={'id'})

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot) -> "RecipeVersionHistoryEntry":
        return cls.model_validate({**snapshot.data, 'id': snapshot.id})

class RecipeRepricingResult(BaseModel):
    """Outcome of re-pricing one recipe after an ingredient cost change"""
    recipe_id: str = Field(alias='recipeId')
    success: bool
    version: Optional[int] = None
    total_cost: Optional[float] = Field(None, alias='totalCost')
    version_bumped: bool = Field(False, alias='versionBumped')
    error: Optional[str] = None

    class Config:
        populate_by_name = True

class RecipeResponse(BaseModel):
    success: bool = True
    data: Recipe

class RecipesListResponse(BaseModel):
    success: bool = True
    total: int
    data: List[Recipe]
    page: int = 1
    limit: int = 50

class RecipeHistoryResponse(BaseModel):
    success: bool = True
    data: List[RecipeVersionHistoryEntry]
