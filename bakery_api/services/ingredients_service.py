import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from bakery_api.core.documents import (
    DocumentStore,
    DocumentTransaction,
    Filter,
    bakery_collection,
    document_path,
    new_document_id,
)
from bakery_api.core.exceptions import BadRequestError, NotFoundError, validation_error_from
from bakery_api.models.common import serialize_timestamp, utc_now
from bakery_api.models.ingredient import Ingredient, IngredientCreate, IngredientUpdate, StockUpdate
from bakery_api.models.recipe import RecipeRepricingResult

if TYPE_CHECKING:
    from bakery_api.services.recipes_service import RecipeService

logger = logging.getLogger(__name__)

class IngredientStore:
    """Ingredient documents at bakeries/{bakeryId}/ingredients/{ingredientId}"""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def collection(bakery_id: str) -> str:
        return bakery_collection(bakery_id, "ingredients")

    def path(self, bakery_id: str, ingredient_id: str) -> str:
        return document_path(self.collection(bakery_id), ingredient_id)

    async def get(self, bakery_id: str, ingredient_id: str) -> Optional[Ingredient]:
        snapshot = await self.store.get(self.path(bakery_id, ingredient_id))
        return Ingredient.from_snapshot(snapshot) if snapshot else None

    async def list(
        self,
        bakery_id: str,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[Ingredient], int]:
        filters = []
        if category:
            filters.append(Filter("category", "==", category))
        if is_active is not None:
            filters.append(Filter("isActive", "==", is_active))

        snapshots = await self.store.query(self.collection(bakery_id), filters, order_by=("name", "asc"))
        offset = (page - 1) * limit
        page_items = snapshots[offset:offset + limit]
        return [Ingredient.from_snapshot(snapshot) for snapshot in page_items], len(snapshots)

    async def create(self, bakery_id: str, data: IngredientCreate) -> Ingredient:
        ingredient = Ingredient(
            **data.model_dump(),
            id=new_document_id(),
            bakery_id=bakery_id
        )

        async def body(txn: DocumentTransaction) -> Ingredient:
            txn.set(self.path(bakery_id, ingredient.id), ingredient.to_document())
            return ingredient

        created = await self.store.run_transaction(body)
        logger.info(f"✅ Ingredient {created.id} created for bakery {bakery_id}")
        return created

    async def update(self, bakery_id: str, ingredient_id: str, patch: Dict[str, Any]) -> Ingredient:
        """Partial update; does not re-price recipes"""
        _, updated = await self.apply_patch(bakery_id, ingredient_id, patch)
        return updated

    async def apply_patch(self, bakery_id: str, ingredient_id: str, patch: Dict[str, Any]) -> Tuple[Ingredient, Ingredient]:
        """Apply a camelCase patch in its own transaction, returning (previous, updated)"""
        patch = {key: value for key, value in patch.items() if key not in ("id", "bakeryId", "usedInRecipes", "createdAt")}

        async def body(txn: DocumentTransaction) -> Tuple[Ingredient, Ingredient]:
            current = await self.read(txn, bakery_id, ingredient_id)
            if current is None:
                raise NotFoundError(f"Ingredient {ingredient_id} not found")
            try:
                updated = Ingredient.model_validate({
                    **current.to_document(),
                    **patch,
                    "id": current.id,
                    "updatedAt": utc_now()
                })
            except PydanticValidationError as e:
                raise validation_error_from(e, "Invalid ingredient data")

            document = updated.to_document()
            changes = {key: document[key] for key in patch if key in document}
            changes["updatedAt"] = document["updatedAt"]
            txn.update(self.path(bakery_id, ingredient_id), changes)
            return current, updated

        return await self.store.run_transaction(body)

    async def delete(self, bakery_id: str, ingredient_id: str) -> None:
        async def body(txn: DocumentTransaction) -> None:
            ingredient = await self.read(txn, bakery_id, ingredient_id)
            if ingredient is None:
                raise NotFoundError(f"Ingredient {ingredient_id} not found")
            if ingredient.used_in_recipes:
                raise BadRequestError(
                    "Cannot delete ingredient that is used in recipes",
                    details={"usedInRecipes": ingredient.used_in_recipes}
                )
            txn.delete(self.path(bakery_id, ingredient_id))

        await self.store.run_transaction(body)
        logger.info(f"🗑️ Ingredient {ingredient_id} deleted from bakery {bakery_id}")

    async def adjust_stock(self, bakery_id: str, ingredient_id: str, stock: StockUpdate) -> Ingredient:
        async def body(txn: DocumentTransaction) -> Ingredient:
            ingredient = await self.read(txn, bakery_id, ingredient_id)
            if ingredient is None:
                raise NotFoundError(f"Ingredient {ingredient_id} not found")

            if stock.current_stock is not None:
                new_stock = stock.current_stock
            else:
                new_stock = ingredient.current_stock + stock.adjustment
            if new_stock < 0:
                raise BadRequestError(
                    f"Insufficient stock for ingredient {ingredient_id}",
                    details={"currentStock": ingredient.current_stock, "adjustment": stock.adjustment}
                )

            now = utc_now()
            txn.update(self.path(bakery_id, ingredient_id), {
                "currentStock": new_stock,
                "updatedAt": serialize_timestamp(now)
            })
            return ingredient.model_copy(update={"current_stock": new_stock, "updated_at": now})

        return await self.store.run_transaction(body)

    # Transactional helpers used by the recipe workflows

    async def read(self, txn: DocumentTransaction, bakery_id: str, ingredient_id: str) -> Optional[Ingredient]:
        snapshot = await txn.get(self.path(bakery_id, ingredient_id))
        return Ingredient.from_snapshot(snapshot) if snapshot else None

    def add_recipe_reference(self, txn: DocumentTransaction, bakery_id: str, ingredient_id: str, recipe_id: str) -> None:
        txn.array_union(
            self.path(bakery_id, ingredient_id), "usedInRecipes", [recipe_id],
            extra={"updatedAt": serialize_timestamp(utc_now())}
        )

    def remove_recipe_reference(self, txn: DocumentTransaction, bakery_id: str, ingredient_id: str, recipe_id: str) -> None:
        txn.array_remove(
            self.path(bakery_id, ingredient_id), "usedInRecipes", [recipe_id],
            extra={"updatedAt": serialize_timestamp(utc_now())}
        )

class IngredientService:
    """Ingredient workflows, including recipe re-pricing after a cost change"""

    def __init__(self, ingredients: IngredientStore, recipes: "RecipeService"):
        self.ingredients = ingredients
        self.recipes = recipes

    async def create_ingredient(self, bakery_id: str, data: IngredientCreate) -> Ingredient:
        return await self.ingredients.create(bakery_id, data)

    async def get_ingredient(self, bakery_id: str, ingredient_id: str) -> Ingredient:
        ingredient = await self.ingredients.get(bakery_id, ingredient_id)
        if ingredient is None:
            raise NotFoundError(f"Ingredient {ingredient_id} not found")
        return ingredient

    async def list_ingredients(
        self,
        bakery_id: str,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 50
    ) -> Tuple[List[Ingredient], int]:
        return await self.ingredients.list(bakery_id, category=category, is_active=is_active, page=page, limit=limit)

    async def update_ingredient(
        self,
        bakery_id: str,
        ingredient_id: str,
        update: IngredientUpdate
    ) -> Tuple[Ingredient, List[RecipeRepricingResult]]:
        patch = update.model_dump(exclude_unset=True, by_alias=True)
        previous, updated = await self.ingredients.apply_patch(bakery_id, ingredient_id, patch)

        recipe_updates: List[RecipeRepricingResult] = []
        cost_changed = "costPerUnit" in patch and updated.cost_per_unit != previous.cost_per_unit
        if cost_changed and updated.used_in_recipes:
            logger.info(
                f"💰 Ingredient {ingredient_id} cost {previous.cost_per_unit} -> {updated.cost_per_unit}, "
                f"re-pricing {len(updated.used_in_recipes)} recipe(s)"
            )
            recipe_updates = await self.recipes.on_ingredient_cost_changed(
                bakery_id, ingredient_id, updated.cost_per_unit, updated.used_in_recipes
            )
        return updated, recipe_updates

    async def adjust_stock(self, bakery_id: str, ingredient_id: str, stock: StockUpdate) -> Ingredient:
        return await self.ingredients.adjust_stock(bakery_id, ingredient_id, stock)

    async def delete_ingredient(self, bakery_id: str, ingredient_id: str) -> None:
        await self.ingredients.delete(bakery_id, ingredient_id)
