from pydantic_settings import BaseSettings, SettingsConfigDict


class PriceListSettings(BaseSettings):
    """Configuration du module des listes de prix."""
    DEFAULT_CURRENCY: str = "EUR"

    # Cache des prix résolus
    RESOLUTION_CACHE_ENABLED: bool = True
    RESOLUTION_CACHE_TTL_SECONDS: int = 30
    RESOLUTION_CACHE_MAX_ENTRIES: int = 5000

    # Validation de la précédence
    SOON_TO_EXPIRE_DAYS: int = 7
    MANY_ACTIVE_LISTS_THRESHOLD: int = 10

    # Génération
    PURCHASE_LINES_PAGE_SIZE: int = 500
    UPDATE_FROM_PURCHASES_DEFAULT_DAYS: int = 90
    MAX_GENERATED_CODE_LENGTH: int = 20

    model_config = SettingsConfigDict(env_prefix="PRICE_LISTS_", env_file=".env", extra="ignore")


price_list_settings = PriceListSettings()
