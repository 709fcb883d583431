import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from bakery_api.config import settings
from bakery_api.core.logging import setup_logging
from bakery_api.core.documents import DocumentStore
from bakery_api.core.exceptions import (
    APIError,
    api_exception_handler,
    general_exception_handler,
    request_validation_exception_handler,
)
from bakery_api.core.middleware import request_logging_middleware, session_validation_middleware
from bakery_api.database import DatabasePool, PostgresDocumentStore, get_db_connection
from bakery_api.routers import ingredients, recipes
from bakery_api.services.ingredients_service import IngredientService, IngredientStore
from bakery_api.services.products_service import ActiveProductReferences
from bakery_api.services.recipe_versioning import RecipeVersionHistory
from bakery_api.services.recipes_service import RecipeService, RecipeStore

# Initialize logging
setup_logging()

logger = logging.getLogger(__name__)

def configure_services(app: FastAPI, store: DocumentStore) -> None:
    """Build the service graph on top of a document store and expose it on app.state"""
    ingredient_store = IngredientStore(store)
    recipe_service = RecipeService(
        recipes=RecipeStore(store),
        ingredients=ingredient_store,
        history=RecipeVersionHistory(store),
        products=ActiveProductReferences(),
        order_sensitive=settings.recipe_ingredient_order_sensitive
    )
    app.state.document_store = store
    app.state.recipe_service = recipe_service
    app.state.ingredient_service = IngredientService(ingredient_store, recipe_service)

@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await DatabasePool.create_pool()
    configure_services(app, PostgresDocumentStore(pool, max_attempts=settings.transaction_max_attempts))
    logger.info(f"🚀 Bakery API started ({settings.environment})")
    yield
    await DatabasePool.close_pool()

app = FastAPI(
    title="Bakery Recipe Service",
    version="1.0.0",
    debug=settings.debug,
    docs_url="/docs",
    lifespan=lifespan
)

# Exception handlers
app.add_exception_handler(APIError, api_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Middlewares run in reverse order of registration: session first, then logging
app.middleware("http")(request_logging_middleware)
app.middleware("http")(session_validation_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(recipes.router, prefix="/bakeries/{bakery_id}/recipes", tags=["recipes"])
app.include_router(ingredients.router, prefix="/bakeries/{bakery_id}/ingredients", tags=["ingredients"])

@app.get("/")
async def root():
    return {
        "message": "Bakery Recipe Service",
        "version": "1.0.0",
        "environment": settings.environment
    }

@app.get("/health")
async def health():
    try:
        async with get_db_connection() as conn:
            await conn.fetchval("SELECT 1")
    except Exception as e:
        logger.error(f"❌ Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": settings.db_name})
    return {
        "status": "healthy",
        "database": settings.db_name,
        "host": settings.db_host
    }
