"""
Recipe versioning policy and version history.

A new version is cut only for changes that affect production: the ingredient
list compared by (ingredientId, quantity, costPerUnit), the baking
temperature, the baking time and the ordered list of steps. Name,
description, category, notes and per-ingredient notes are cosmetic.

Ingredient lists are compared position by position unless
``order_sensitive=False`` is passed, in which case they are compared as
multisets and a pure reordering does not cut a version.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set, Tuple

from bakery_api.core.documents import (
    DocumentStore,
    DocumentTransaction,
    Filter,
    bakery_collection,
    document_path,
    new_document_id,
)
from bakery_api.models.common import serialize_timestamp
from bakery_api.models.recipe import Recipe, RecipeIngredient, RecipeVersionHistoryEntry

logger = logging.getLogger(__name__)

def _ingredient_key(ingredient: RecipeIngredient) -> Tuple[str, float, float]:
    return (ingredient.ingredient_id, float(ingredient.quantity), float(ingredient.cost_per_unit))

def _ingredient_keys(ingredients: Iterable[RecipeIngredient], order_sensitive: bool) -> List[Tuple[str, float, float]]:
    keys = [_ingredient_key(ingredient) for ingredient in ingredients]
    return keys if order_sensitive else sorted(keys)

def ingredients_changed(old: Recipe, new: Recipe, order_sensitive: bool = True) -> bool:
    return _ingredient_keys(old.ingredients, order_sensitive) != _ingredient_keys(new.ingredients, order_sensitive)

def requires_new_version(old: Recipe, new: Recipe, order_sensitive: bool = True) -> bool:
    if ingredients_changed(old, new, order_sensitive=order_sensitive):
        return True
    if old.baking_temp != new.baking_temp:
        return True
    if old.baking_time != new.baking_time:
        return True
    return list(old.steps) != list(new.steps)

def ingredient_reference_diff(old: Recipe, new: Recipe) -> Tuple[Set[str], Set[str]]:
    """Return (ingredient ids to add, ingredient ids to remove)"""
    old_ids = old.ingredient_ids
    new_ids = new.ingredient_ids
    return new_ids - old_ids, old_ids - new_ids

class RecipeVersionHistory:
    """Append-only log under bakeries/{bakeryId}/recipes/{recipeId}/history"""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def collection(bakery_id: str, recipe_id: str) -> str:
        return f"{bakery_collection(bakery_id, 'recipes')}/{recipe_id}/history"

    def append(self, txn: DocumentTransaction, recipe: Recipe) -> int:
        """Stage a snapshot of the state being superseded and return the next version number"""
        entry = RecipeVersionHistoryEntry.capture(recipe)
        path = document_path(self.collection(recipe.bakery_id, recipe.id), new_document_id())
        txn.set(path, entry.to_document())
        logger.info(f"🗂️ Archived recipe {recipe.id} version {recipe.version}")
        return recipe.version + 1

    async def list(self, bakery_id: str, recipe_id: str) -> List[RecipeVersionHistoryEntry]:
        snapshots = await self.store.query(
            self.collection(bakery_id, recipe_id),
            order_by=("version", "desc")
        )
        return [RecipeVersionHistoryEntry.from_snapshot(snapshot) for snapshot in snapshots]

    async def get_version_at(self, bakery_id: str, recipe_id: str, at: datetime) -> Optional[RecipeVersionHistoryEntry]:
        snapshots = await self.store.query(
            self.collection(bakery_id, recipe_id),
            filters=[Filter("timestamp", "<=", serialize_timestamp(at))],
            order_by=("timestamp", "desc"),
            limit=1
        )
        if not snapshots:
            return None
        return RecipeVersionHistoryEntry.from_snapshot(snapshots[0])
