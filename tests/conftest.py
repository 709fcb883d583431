"""Pytest configuration and fixtures for the bakery recipe services."""

import copy
import operator
from contextlib import asynccontextmanager

import pytest

from bakery_api.core.documents import (
    DocumentSnapshot,
    DocumentStore,
    DocumentTransaction,
    TransactionConflict,
    split_path,
)
from bakery_api.core.exceptions import NotFoundError
from bakery_api.models.ingredient import Ingredient
from bakery_api.services.ingredients_service import IngredientService, IngredientStore
from bakery_api.services.products_service import ActiveProductReferences
from bakery_api.services.recipe_versioning import RecipeVersionHistory
from bakery_api.services.recipes_service import RecipeService, RecipeStore

BAKERY_ID = "bakery-1"

_COMPARISONS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _matches(data, f):
    value = data.get(f.field)
    if f.op == "==":
        return value == f.value
    if f.op == "array-contains":
        return isinstance(value, list) and f.value in value
    if value is None:
        return False
    return _COMPARISONS[f.op](value, f.value)


class InMemoryTransaction(DocumentTransaction):
    def __init__(self, store):
        super().__init__()
        self._store = store
        self._read_versions = {}

    async def _read(self, path):
        self._read_versions[path] = self._store.versions.get(path, 0)
        data = self._store.documents.get(path)
        return DocumentSnapshot(path, copy.deepcopy(data)) if data is not None else None

    async def _query(self, collection, filters, order_by, limit, offset):
        snapshots = self._store.run_query(collection, filters, order_by, limit, offset)
        for snapshot in snapshots:
            self._read_versions[snapshot.path] = self._store.versions.get(snapshot.path, 0)
        return snapshots

    async def _apply(self, writes):
        self._store.commit(self._read_versions, writes)


class InMemoryDocumentStore(DocumentStore):
    """Document store over plain dicts with optimistic conflict detection.

    Commits are atomic: every write is applied to a working copy that only
    replaces the live data when all of them succeed. A commit fails with
    TransactionConflict when a document read by the transaction changed in
    between, or when `inject_conflicts` is still positive.
    """

    def __init__(self, max_attempts=5):
        super().__init__(max_attempts=max_attempts)
        self.documents = {}
        self.versions = {}
        self.inject_conflicts = 0
        self.transactions_started = 0
        self.commits = 0

    def put(self, path, data):
        split_path(path)
        self.documents[path] = copy.deepcopy(data)
        self.versions[path] = self.versions.get(path, 0) + 1

    def data(self, path):
        return copy.deepcopy(self.documents.get(path))

    def paths_in(self, collection):
        return sorted(path for path in self.documents if split_path(path)[0] == collection)

    async def get(self, path):
        data = self.documents.get(path)
        return DocumentSnapshot(path, copy.deepcopy(data)) if data is not None else None

    async def query(self, collection, filters=(), order_by=None, limit=None, offset=None):
        return self.run_query(collection, list(filters), order_by, limit, offset)

    def run_query(self, collection, filters, order_by, limit, offset):
        snapshots = [
            DocumentSnapshot(path, copy.deepcopy(self.documents[path]))
            for path in self.paths_in(collection)
            if all(_matches(self.documents[path], f) for f in filters)
        ]
        if order_by:
            order_field, direction = order_by
            present = [s for s in snapshots if s.data.get(order_field) is not None]
            missing = [s for s in snapshots if s.data.get(order_field) is None]
            present.sort(key=lambda s: s.data[order_field], reverse=direction.lower() == "desc")
            snapshots = present + missing
        if offset:
            snapshots = snapshots[offset:]
        if limit is not None:
            snapshots = snapshots[:limit]
        return snapshots

    @asynccontextmanager
    async def transaction(self):
        self.transactions_started += 1
        yield InMemoryTransaction(self)

    def commit(self, read_versions, writes):
        if self.inject_conflicts > 0:
            self.inject_conflicts -= 1
            raise TransactionConflict("injected conflict")
        for path, version in read_versions.items():
            if self.versions.get(path, 0) != version:
                raise TransactionConflict(f"{path} changed since it was read")

        working = copy.deepcopy(self.documents)
        touched = set()
        for op in writes:
            current = working.get(op.path)
            if op.kind == "set":
                working[op.path] = copy.deepcopy(op.data)
            elif op.kind == "delete":
                working.pop(op.path, None)
            elif current is None:
                raise NotFoundError(f"Document {op.path} not found")
            elif op.kind == "update":
                current.update(copy.deepcopy(op.data))
            elif op.kind == "array_union":
                values = list(current.get(op.array_field) or [])
                values.extend(v for v in op.values if v not in values)
                current[op.array_field] = values
                current.update(copy.deepcopy(op.data))
            elif op.kind == "array_remove":
                current[op.array_field] = [v for v in current.get(op.array_field) or [] if v not in op.values]
                current.update(copy.deepcopy(op.data))
            touched.add(op.path)

        self.documents = working
        for path in touched:
            self.versions[path] = self.versions.get(path, 0) + 1
        self.commits += 1


@pytest.fixture
def store():
    return InMemoryDocumentStore(max_attempts=3)


@pytest.fixture
def ingredient_store(store):
    return IngredientStore(store)


@pytest.fixture
def recipe_store(store):
    return RecipeStore(store)


@pytest.fixture
def history(store):
    return RecipeVersionHistory(store)


@pytest.fixture
def recipe_service(recipe_store, ingredient_store, history):
    return RecipeService(
        recipes=recipe_store,
        ingredients=ingredient_store,
        history=history,
        products=ActiveProductReferences(),
    )


@pytest.fixture
def ingredient_service(ingredient_store, recipe_service):
    return IngredientService(ingredient_store, recipe_service)


@pytest.fixture
def seed_ingredient(store):
    """Factory writing an Ingredient document straight into the store."""

    def _seed(ingredient_id, cost_per_unit, name=None, unit="g", bakery_id=BAKERY_ID, **extra):
        ingredient = Ingredient(
            id=ingredient_id,
            bakery_id=bakery_id,
            name=name or ingredient_id.capitalize(),
            unit=unit,
            cost_per_unit=cost_per_unit,
            **extra,
        )
        store.put(f"bakeries/{bakery_id}/ingredients/{ingredient_id}", ingredient.to_document())
        return ingredient

    return _seed


@pytest.fixture
def seed_product(store):
    """Factory writing a product that references a recipe."""

    def _seed(product_id, recipe_id, is_active=True, bakery_id=BAKERY_ID):
        store.put(
            f"bakeries/{bakery_id}/products/{product_id}",
            {"name": product_id, "recipeId": recipe_id, "isActive": is_active},
        )

    return _seed


@pytest.fixture
def flour_and_sugar(seed_ingredient):
    return {
        "flour": seed_ingredient("flour", 0.002, allergens=["gluten"]),
        "sugar": seed_ingredient("sugar", 0.004),
    }


@pytest.fixture
def assert_back_references(store):
    """Check that usedInRecipes mirrors the ingredient lists of current recipes."""

    def _check(bakery_id=BAKERY_ID):
        expected = {}
        for path in store.paths_in(f"bakeries/{bakery_id}/recipes"):
            recipe_id = split_path(path)[1]
            for entry in store.documents[path]["ingredients"]:
                expected.setdefault(entry["ingredientId"], set()).add(recipe_id)

        for path in store.paths_in(f"bakeries/{bakery_id}/ingredients"):
            ingredient_id = split_path(path)[1]
            used_in = store.documents[path].get("usedInRecipes", [])
            assert len(used_in) == len(set(used_in)), f"duplicate back-references on {ingredient_id}"
            assert set(used_in) == expected.get(ingredient_id, set()), f"back-references out of sync on {ingredient_id}"

    return _check
