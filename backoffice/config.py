import logging
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Charger les variables d'environnement AVANT de définir la classe Settings
load_dotenv()


class Settings(BaseSettings):
    # --- Base de Données ---
    POSTGRES_DB: str = "pricing"
    POSTGRES_USER: str = "pricing"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: str = "5432"
    # URL complète (prioritaire sur les variables POSTGRES_*), ex: sqlite+aiosqlite:///./pricing.db
    DATABASE_URL: Optional[str] = None
    DB_ECHO_LOG: bool = False
    DB_CREATE_TABLES_ON_STARTUP: bool = False

    # --- Pagination ---
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # --- Application ---
    API_V1_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()

if not settings.DATABASE_URL and not settings.POSTGRES_PASSWORD:
    logger.warning("POSTGRES_PASSWORD n'est pas défini. La connexion PostgreSQL risque d'échouer.")

logger.info(f"Configuration chargée: DB={settings.POSTGRES_DB}@{settings.POSTGRES_HOST}, API={settings.API_V1_PREFIX}")
