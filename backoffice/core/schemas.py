from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class OrmBaseModel(BaseModel):
    """Schéma de base permettant la validation depuis des objets ORM."""
    model_config = ConfigDict(from_attributes=True)


class PaginatedResponse(BaseModel, Generic[T]):
    """Réponse paginée générique."""
    items: List[T]
    total: int
