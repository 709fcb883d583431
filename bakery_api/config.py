from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional

class Settings(BaseSettings):
    # Database - a full DSN wins over the individual parts
    database_url: Optional[str] = Field(default=None, alias='DATABASE_URL')
    db_user: str = Field(default='postgres', alias='DB_USER')
    db_host: str = Field(default='localhost', alias='DB_HOST')
    db_password: str = Field(default='postgres', alias='DB_PASSWORD')
    db_port: int = Field(default=5432, alias='DB_PORT')
    db_name: str = Field(default='bakery', alias='DB_NAME')
    db_pool_min_size: int = Field(default=5, alias='DB_POOL_MIN_SIZE')
    db_pool_max_size: int = Field(default=20, alias='DB_POOL_MAX_SIZE')
    db_command_timeout: int = Field(default=60, alias='DB_COMMAND_TIMEOUT')

    # Document store
    transaction_max_attempts: int = Field(default=5, ge=1, alias='TRANSACTION_MAX_ATTEMPTS')
    recipe_ingredient_order_sensitive: bool = Field(default=True, alias='RECIPE_INGREDIENT_ORDER_SENSITIVE')

    # JWT Security - tokens are issued elsewhere, we only verify them
    jwt_secret: str = Field(default='development-secret-change-me-in-production', alias='JWT_SECRET')
    jwt_algorithm: str = Field(default='HS256', alias='JWT_ALGORITHM')

    # App settings
    environment: str = Field(default="development", alias='ENVIRONMENT')
    log_level: str = Field(default="INFO", alias='LOG_LEVEL')

    # FastAPI specific
    port: int = Field(default=5000, alias='PORT')
    host: str = Field(default="0.0.0.0", alias='HOST')
    debug: bool = Field(default=False, alias='DEBUG')

    # CORS configuration
    cors_origins: str = Field(default="http://localhost:3000", alias='CORS_ORIGINS')

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables
        populate_by_name = True

    # Properties calculadas
    @property
    def db_connection_params(self) -> dict:
        if self.database_url:
            return {"dsn": self.database_url}
        return {
            "host": self.db_host,
            "port": self.db_port,
            "user": self.db_user,
            "password": self.db_password,
            "database": self.db_name,
        }

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

settings = Settings()
