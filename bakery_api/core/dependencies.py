from fastapi import Request
from bakery_api.core.middleware import SessionContext, require_valid_session
from bakery_api.core.security import require_bakery_access
from bakery_api.services.ingredients_service import IngredientService
from bakery_api.services.recipes_service import RecipeService

def get_recipe_service(request: Request) -> RecipeService:
    service = getattr(request.app.state, 'recipe_service', None)
    if service is None:
        raise RuntimeError("Recipe service is not initialized")
    return service

def get_ingredient_service(request: Request) -> IngredientService:
    service = getattr(request.app.state, 'ingredient_service', None)
    if service is None:
        raise RuntimeError("Ingredient service is not initialized")
    return service

async def require_bakery_staff(request: Request, bakery_id: str) -> SessionContext:
    """Dependency: a valid session whose role grants access to the bakery in the path"""
    session_context = require_valid_session(request)
    require_bakery_access(session_context.role, session_context.bakery_id, bakery_id)
    return session_context
