from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, List, Dict, Any, Tuple, Iterable, Set

from backoffice.price_lists.constants import PriceListStatus, PriceListDirection, AssignmentStatus
from backoffice.price_lists.domain.entities import (
    PriceList, PriceListEntry, BusinessPartyAssignment, GenerationMetadata, PriceAuditRecord
)

# Interfaces des Repositories (contrats). Aucune méthode ne commit:
# les services applicatifs contrôlent la transaction.


class AbstractPriceListRepository(ABC):

    @abstractmethod
    async def get_by_id(self, price_list_id: int) -> Optional[PriceList]:
        raise NotImplementedError

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[PriceList]:
        raise NotImplementedError

    @abstractmethod
    async def list_codes_starting_with(self, prefix: str) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def get_many(self, price_list_ids: Iterable[int]) -> Dict[int, PriceList]:
        raise NotImplementedError

    @abstractmethod
    async def list(self, limit: int, offset: int, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[PriceList], int]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_status(
        self,
        statuses: Optional[List[PriceListStatus]] = None,
        direction: Optional[PriceListDirection] = None,
    ) -> List[PriceList]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_event(self, event_id: Optional[int]) -> List[PriceList]:
        """Listes rattachées à l'événement (ou listes globales si event_id est None)."""
        raise NotImplementedError

    @abstractmethod
    async def add(self, data: Dict[str, Any]) -> PriceList:
        raise NotImplementedError

    @abstractmethod
    async def update(self, price_list_id: int, data: Dict[str, Any]) -> PriceList:
        raise NotImplementedError


class AbstractPriceListEntryRepository(ABC):

    @abstractmethod
    async def get_by_id(self, entry_id: int) -> Optional[PriceListEntry]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_price_list(self, price_list_id: int, only_active: bool = False) -> List[PriceListEntry]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_product(
        self, product_id: int, price_list_ids: Optional[Iterable[int]] = None, only_active: bool = True
    ) -> List[PriceListEntry]:
        raise NotImplementedError

    @abstractmethod
    async def list_active_for_price_lists(self, price_list_ids: Iterable[int]) -> List[PriceListEntry]:
        raise NotImplementedError

    @abstractmethod
    async def add(self, data: Dict[str, Any]) -> PriceListEntry:
        raise NotImplementedError

    @abstractmethod
    async def add_many(self, rows: List[Dict[str, Any]]) -> int:
        raise NotImplementedError

    @abstractmethod
    async def update(self, entry_id: int, data: Dict[str, Any]) -> PriceListEntry:
        raise NotImplementedError

    @abstractmethod
    async def update_price(self, entry_id: int, price: Decimal) -> PriceListEntry:
        raise NotImplementedError


class AbstractBusinessPartyAssignmentRepository(ABC):

    @abstractmethod
    async def get(self, price_list_id: int, business_party_id: int, only_active: bool = True) -> Optional[BusinessPartyAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_price_list(self, price_list_id: int, only_active: bool = True) -> List[BusinessPartyAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def list_for_party(self, business_party_id: int, only_active: bool = True) -> List[BusinessPartyAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def list_active(self) -> List[BusinessPartyAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def price_list_ids_with_active_assignments(self) -> Set[int]:
        raise NotImplementedError

    @abstractmethod
    async def add(self, data: Dict[str, Any]) -> BusinessPartyAssignment:
        raise NotImplementedError

    @abstractmethod
    async def set_status(self, assignment_id: int, status: AssignmentStatus) -> BusinessPartyAssignment:
        raise NotImplementedError


class AbstractGenerationMetadataRepository(ABC):
    """Métadonnées écrites une seule fois: pas de méthode de mise à jour."""

    @abstractmethod
    async def add(self, data: Dict[str, Any]) -> GenerationMetadata:
        raise NotImplementedError

    @abstractmethod
    async def get(self, price_list_id: int) -> Optional[GenerationMetadata]:
        raise NotImplementedError


class AbstractPriceAuditRepository(ABC):

    @abstractmethod
    async def add(self, data: Dict[str, Any]) -> PriceAuditRecord:
        raise NotImplementedError

    @abstractmethod
    async def list_for_entity(self, entity_id: int, entity_name: str = "Product") -> List[PriceAuditRecord]:
        raise NotImplementedError
