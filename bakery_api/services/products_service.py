from bakery_api.core.documents import DocumentTransaction, Filter, bakery_collection

class ActiveProductReferences:
    """Answers whether any active product of a bakery is built from a given recipe"""

    async def is_recipe_in_use(self, txn: DocumentTransaction, bakery_id: str, recipe_id: str) -> bool:
        products = await txn.query(
            bakery_collection(bakery_id, "products"),
            filters=[Filter("recipeId", "==", recipe_id), Filter("isActive", "==", True)],
            limit=1
        )
        return len(products) > 0
