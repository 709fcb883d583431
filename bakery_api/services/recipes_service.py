"""
Recipe store and the recipe workflows built on it.

Every workflow runs in a single document transaction: all reads (recipe,
referenced ingredients, product references) happen first, then the recipe
write, the history entry and the ingredient back-reference updates are
staged together. Any error raised inside the body discards every staged
write.

Ingredient cost changes are propagated one recipe at a time, each in its own
transaction, and the outcome of every recipe is reported separately.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from bakery_api.core.documents import (
    DocumentStore,
    DocumentTransaction,
    Filter,
    bakery_collection,
    document_path,
    new_document_id,
)
from bakery_api.core.exceptions import (
    BadRequestError,
    NotFoundError,
    ValidationError,
    validation_error_from,
)
from bakery_api.models.common import utc_now
from bakery_api.models.ingredient import Ingredient
from bakery_api.models.recipe import (
    Recipe,
    RecipeCreate,
    RecipeIngredient,
    RecipeIngredientInput,
    RecipeRepricingResult,
    RecipeUpdate,
    RecipeVersionHistoryEntry,
)
from bakery_api.services.ingredients_service import IngredientStore
from bakery_api.services.products_service import ActiveProductReferences
from bakery_api.services.recipe_versioning import (
    RecipeVersionHistory,
    ingredient_reference_diff,
    requires_new_version,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

def _parse(model: Type[M], data: Union[M, Dict[str, Any]], message: str) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise validation_error_from(e, message)

def _build_recipe(data: Dict[str, Any]) -> Recipe:
    try:
        return Recipe.model_validate(data)
    except PydanticValidationError as e:
        raise validation_error_from(e, "Invalid recipe data")

def _check_ingredient_entries(entries: Sequence[RecipeIngredientInput]) -> None:
    """Every entry needs an ingredientId and a positive numeric quantity"""
    invalid = [
        index for index, entry in enumerate(entries)
        if not entry.ingredient_id or entry.quantity is None or entry.quantity <= 0
    ]
    if invalid:
        raise ValidationError(
            f"Invalid ingredients at index {', '.join(str(index) for index in invalid)}: "
            "ingredientId and a positive quantity are required",
            details={"invalidIndexes": invalid}
        )

def _distinct(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(values))

class RecipeStore:
    """Recipe documents at bakeries/{bakeryId}/recipes/{recipeId}"""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def collection(bakery_id: str) -> str:
        return bakery_collection(bakery_id, "recipes")

    def path(self, bakery_id: str, recipe_id: str) -> str:
        return document_path(self.collection(bakery_id), recipe_id)

    async def get(self, bakery_id: str, recipe_id: str) -> Optional[Recipe]:
        snapshot = await self.store.get(self.path(bakery_id, recipe_id))
        return Recipe.from_snapshot(snapshot) if snapshot else None

    async def list(
        self,
        bakery_id: str,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[Recipe], int]:
        filters = []
        if is_active is not None:
            filters.append(Filter("isActive", "==", is_active))
        if category:
            filters.append(Filter("category", "==", category))

        snapshots = await self.store.query(self.collection(bakery_id), filters, order_by=("createdAt", "desc"))
        offset = (page - 1) * limit
        return [Recipe.from_snapshot(snapshot) for snapshot in snapshots[offset:offset + limit]], len(snapshots)

    async def read(self, txn: DocumentTransaction, bakery_id: str, recipe_id: str) -> Optional[Recipe]:
        snapshot = await txn.get(self.path(bakery_id, recipe_id))
        return Recipe.from_snapshot(snapshot) if snapshot else None

    def create(self, txn: DocumentTransaction, recipe: Recipe) -> None:
        txn.set(self.path(recipe.bakery_id, recipe.id), recipe.to_document())

    def apply_update(self, txn: DocumentTransaction, recipe: Recipe) -> None:
        txn.set(self.path(recipe.bakery_id, recipe.id), recipe.to_document())

    def delete(self, txn: DocumentTransaction, bakery_id: str, recipe_id: str) -> None:
        txn.delete(self.path(bakery_id, recipe_id))

class RecipeService:
    def __init__(
        self,
        recipes: RecipeStore,
        ingredients: IngredientStore,
        history: RecipeVersionHistory,
        products: ActiveProductReferences,
        order_sensitive: bool = True
    ):
        self.recipes = recipes
        self.ingredients = ingredients
        self.history = history
        self.products = products
        self.order_sensitive = order_sensitive

    @property
    def store(self) -> DocumentStore:
        return self.recipes.store

    # Queries

    async def get_recipe(self, bakery_id: str, recipe_id: str) -> Recipe:
        recipe = await self.recipes.get(bakery_id, recipe_id)
        if recipe is None:
            raise NotFoundError(f"Recipe {recipe_id} not found")
        return recipe

    async def list_recipes(
        self,
        bakery_id: str,
        is_active: Optional[bool] = None,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[Recipe], int]:
        return await self.recipes.list(bakery_id, is_active=is_active, category=category, page=page, limit=limit)

    async def list_history(self, bakery_id: str, recipe_id: str) -> List[RecipeVersionHistoryEntry]:
        return await self.history.list(bakery_id, recipe_id)

    async def get_version_at(self, bakery_id: str, recipe_id: str, at: datetime) -> Optional[RecipeVersionHistoryEntry]:
        return await self.history.get_version_at(bakery_id, recipe_id, at)

    # Workflows

    async def create_recipe(self, bakery_id: str, data: Union[RecipeCreate, Dict[str, Any]]) -> Recipe:
        create = _parse(RecipeCreate, data, "Invalid recipe data")
        if not create.ingredients:
            raise ValidationError("Recipe must have at least one ingredient")
        _check_ingredient_entries(create.ingredients)

        recipe_id = new_document_id()
        ingredient_ids = _distinct([entry.ingredient_id for entry in create.ingredients])

        async def body(txn: DocumentTransaction) -> Recipe:
            records: Dict[str, Ingredient] = {}
            for ingredient_id in ingredient_ids:
                ingredient = await self.ingredients.read(txn, bakery_id, ingredient_id)
                if ingredient is None:
                    raise BadRequestError(f"Ingredient {ingredient_id} not found")
                records[ingredient_id] = ingredient

            entries = []
            for entry in create.ingredients:
                ingredient = records[entry.ingredient_id]
                entries.append(RecipeIngredient(
                    ingredient_id=ingredient.id,
                    name=ingredient.name,
                    unit=ingredient.unit,
                    cost_per_unit=ingredient.cost_per_unit,
                    allergens=list(ingredient.allergens),
                    quantity=entry.quantity,
                    base_quantity=entry.base_quantity,
                    notes=entry.notes or ""
                ))

            recipe = _build_recipe({
                **create.model_dump(by_alias=True, exclude={"ingredients"}),
                "id": recipe_id,
                "bakeryId": bakery_id,
                "version": 1,
                "ingredients": entries
            })
            self.recipes.create(txn, recipe)
            for ingredient_id in ingredient_ids:
                if recipe_id not in records[ingredient_id].used_in_recipes:
                    self.ingredients.add_recipe_reference(txn, bakery_id, ingredient_id, recipe_id)
            return recipe

        recipe = await self.store.run_transaction(body)
        logger.info(f"✅ Recipe {recipe.id} created for bakery {bakery_id} with {len(recipe.ingredients)} ingredient(s)")
        return recipe

    async def update_recipe(self, bakery_id: str, recipe_id: str, patch: Union[RecipeUpdate, Dict[str, Any]]) -> Recipe:
        update = _parse(RecipeUpdate, patch, "Invalid recipe data")
        recipe, _ = await self._run_update(bakery_id, recipe_id, lambda current: update)
        return recipe

    async def scale_recipe(self, bakery_id: str, recipe_id: str, factor: float) -> Recipe:
        if factor is None or factor <= 0:
            raise BadRequestError("Scale factor must be greater than 0")

        def scaled(current: Recipe) -> RecipeUpdate:
            return RecipeUpdate(ingredients=[
                RecipeIngredientInput(**ingredient.scaled(factor).model_dump())
                for ingredient in current.ingredients
            ])

        recipe, _ = await self._run_update(bakery_id, recipe_id, scaled)
        logger.info(f"📏 Recipe {recipe_id} scaled by {factor}")
        return recipe

    async def delete_recipe(self, bakery_id: str, recipe_id: str) -> None:
        async def body(txn: DocumentTransaction) -> List[str]:
            recipe = await self.recipes.read(txn, bakery_id, recipe_id)
            if recipe is None:
                raise NotFoundError(f"Recipe {recipe_id} not found")
            if await self.products.is_recipe_in_use(txn, bakery_id, recipe_id):
                raise BadRequestError("Cannot delete recipe that is used by active products")

            existing = []
            for ingredient_id in sorted(recipe.ingredient_ids):
                if await self.ingredients.read(txn, bakery_id, ingredient_id) is not None:
                    existing.append(ingredient_id)

            for ingredient_id in existing:
                self.ingredients.remove_recipe_reference(txn, bakery_id, ingredient_id, recipe_id)
            self.recipes.delete(txn, bakery_id, recipe_id)
            return existing

        released = await self.store.run_transaction(body)
        logger.info(f"🗑️ Recipe {recipe_id} deleted, released {len(released)} ingredient reference(s)")

    async def on_ingredient_cost_changed(
        self,
        bakery_id: str,
        ingredient_id: str,
        new_cost: float,
        affected_recipe_ids: Sequence[str]
    ) -> List[RecipeRepricingResult]:
        def repriced(current: Recipe) -> RecipeUpdate:
            entries = []
            for ingredient in current.ingredients:
                values = ingredient.model_dump()
                if ingredient.ingredient_id == ingredient_id:
                    values["cost_per_unit"] = new_cost
                entries.append(RecipeIngredientInput(**values))
            return RecipeUpdate(ingredients=entries)

        results: List[RecipeRepricingResult] = []
        for recipe_id in _distinct(list(affected_recipe_ids)):
            try:
                recipe, bumped = await self._run_update(bakery_id, recipe_id, repriced)
            except Exception as e:
                message = getattr(e, "message", None) or str(e)
                logger.error(f"❌ Failed to re-price recipe {recipe_id} after ingredient {ingredient_id} changed: {message}")
                results.append(RecipeRepricingResult(recipe_id=recipe_id, success=False, error=message))
                continue
            results.append(RecipeRepricingResult(
                recipe_id=recipe_id,
                success=True,
                version=recipe.version,
                total_cost=recipe.total_cost,
                version_bumped=bumped
            ))

        failed = sum(1 for result in results if not result.success)
        logger.info(
            f"💰 Ingredient {ingredient_id} re-priced {len(results) - failed}/{len(results)} recipe(s)"
            + (f", {failed} failed" if failed else "")
        )
        return results

    # Update pipeline

    async def _run_update(
        self,
        bakery_id: str,
        recipe_id: str,
        build_update: Callable[[Recipe], RecipeUpdate]
    ) -> Tuple[Recipe, bool]:
        """Run the update pipeline in one transaction; returns (recipe, version bumped)"""

        async def body(txn: DocumentTransaction) -> Tuple[Recipe, bool]:
            current = await self.recipes.read(txn, bakery_id, recipe_id)
            if current is None:
                raise NotFoundError(f"Recipe {recipe_id} not found")

            update = build_update(current)
            fields = update.model_dump(exclude_unset=True, by_alias=True, exclude={"ingredients"})
            ingredients = current.ingredients
            records: Dict[str, Optional[Ingredient]] = {}

            if "ingredients" in update.model_fields_set and update.ingredients is not None:
                if not update.ingredients:
                    raise ValidationError("Recipe must have at least one ingredient")
                _check_ingredient_entries(update.ingredients)
                current_by_id = {ingredient.ingredient_id: ingredient for ingredient in reversed(current.ingredients)}
                proposed_ids = _distinct([entry.ingredient_id for entry in update.ingredients])
                added = [ingredient_id for ingredient_id in proposed_ids if ingredient_id not in current_by_id]
                # added and removed ingredients are both read before any write is staged
                for ingredient_id in sorted(set(proposed_ids) ^ current.ingredient_ids):
                    records[ingredient_id] = await self.ingredients.read(txn, bakery_id, ingredient_id)
                for ingredient_id in added:
                    if records[ingredient_id] is None:
                        raise BadRequestError(f"Ingredient {ingredient_id} not found")

                ingredients = self._resolve_entries(update.ingredients, current_by_id, records)

            candidate = _build_recipe({
                **current.to_document(),
                **fields,
                "id": current.id,
                "ingredients": ingredients,
                "updatedAt": utc_now()
            })

            if not requires_new_version(current, candidate, order_sensitive=self.order_sensitive):
                if candidate.to_document() | {"updatedAt": None} == current.to_document() | {"updatedAt": None}:
                    return current, False
                self.recipes.apply_update(txn, candidate)
                return candidate, False

            to_add, to_remove = ingredient_reference_diff(current, candidate)
            for ingredient_id in sorted(to_remove):
                if records.get(ingredient_id) is not None:
                    self.ingredients.remove_recipe_reference(txn, bakery_id, ingredient_id, recipe_id)
            for ingredient_id in sorted(to_add):
                self.ingredients.add_recipe_reference(txn, bakery_id, ingredient_id, recipe_id)

            candidate.version = self.history.append(txn, current)
            self.recipes.apply_update(txn, candidate)
            return candidate, True

        recipe, bumped = await self.store.run_transaction(body)
        if bumped:
            logger.info(f"📝 Recipe {recipe_id} bumped to version {recipe.version}")
        return recipe, bumped

    @staticmethod
    def _resolve_entries(
        entries: Sequence[RecipeIngredientInput],
        current_by_id: Dict[str, RecipeIngredient],
        records: Dict[str, Optional[Ingredient]]
    ) -> List[RecipeIngredient]:
        """
        Fill missing snapshot fields of proposed entries.

        Fields the entry omits (name, unit, costPerUnit, allergens) come from
        the same ingredient already in the recipe, otherwise from the
        Ingredient record. Entries still incomplete afterwards are rejected
        together.
        """
        resolved = []
        incomplete = []
        for index, entry in enumerate(entries):
            source = current_by_id.get(entry.ingredient_id) or records.get(entry.ingredient_id)
            fallback = {}
            if source is not None:
                fallback = {
                    "name": source.name,
                    "unit": source.unit,
                    "cost_per_unit": source.cost_per_unit,
                    "allergens": list(source.allergens),
                }
            values = {**fallback, **entry.model_dump(exclude_none=True)}

            if not values.get("name") or values.get("cost_per_unit") is None:
                incomplete.append(index)
                continue
            try:
                resolved.append(RecipeIngredient(**values))
            except PydanticValidationError:
                incomplete.append(index)

        if incomplete:
            raise ValidationError(
                f"Incomplete ingredients at index {', '.join(str(index) for index in incomplete)}: "
                "ingredientId, quantity, costPerUnit and name are required",
                details={"invalidIndexes": incomplete}
            )
        return resolved
