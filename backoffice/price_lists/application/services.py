import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.catalog.domain.providers import AbstractCatalogFactsProvider
from backoffice.price_lists.application.cache import PriceResolutionCache
from backoffice.price_lists.application.schemas import (
    PriceListCreate, PriceListUpdate, PriceListResponse, PaginatedPriceListResponse,
    PriceListEntryCreate, PriceListEntryUpdate, PriceListEntryResponse,
    BusinessPartyAssignmentCreate, BusinessPartyAssignmentResponse, GenerationMetadataResponse,
)
from backoffice.price_lists.config import price_list_settings
from backoffice.price_lists.constants import (
    PriceListStatus, EntryStatus, AssignmentStatus, ALLOWED_STATUS_TRANSITIONS
)
from backoffice.price_lists.domain.exceptions import (
    PriceListDomainException, PriceListNotFoundException, PriceListEntryNotFoundException,
    ProductNotFoundException, BusinessPartyNotFoundException, DuplicateAssignmentException,
    DuplicatePriceListCodeException, InvalidStatusTransitionException, InvalidQuantityTierException,
    InvalidDateRangeException, PersistenceException,
)
from backoffice.price_lists.domain.entities import PriceList
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository, AbstractGenerationMetadataRepository,
)
from backoffice.price_lists.utils import generate_code_from_name, unique_code

logger = logging.getLogger(__name__)


def validate_quantity_tier(min_quantity: int, max_quantity: int) -> None:
    if min_quantity < 1 or max_quantity < 0 or (max_quantity > 0 and max_quantity < min_quantity):
        raise InvalidQuantityTierException(min_quantity, max_quantity)


def validate_window(valid_from: Optional[datetime], valid_to: Optional[datetime]) -> None:
    if valid_from is not None and valid_to is not None and valid_from > valid_to:
        raise InvalidDateRangeException(
            f"La date de début ({valid_from:%Y-%m-%d}) doit précéder la date de fin ({valid_to:%Y-%m-%d})."
        )


async def build_price_list_code(
    price_list_repo: AbstractPriceListRepository, name: str, requested_code: Optional[str]
) -> str:
    """Retourne le code demandé (conflit s'il est déjà pris), sinon un code unique dérivé du nom."""
    max_length = price_list_settings.MAX_GENERATED_CODE_LENGTH
    if requested_code:
        if await price_list_repo.get_by_code(requested_code):
            raise DuplicatePriceListCodeException(requested_code)
        return requested_code
    base_code = generate_code_from_name(name, max_length) or f"PL-{datetime.utcnow():%Y%m%d}"
    existing = await price_list_repo.list_codes_starting_with(base_code)
    return unique_code(base_code, existing, max_length)


class PriceListService:
    """Service applicatif du store des listes de prix: en-têtes, prix et assignations."""

    def __init__(
        self,
        session: AsyncSession,
        price_list_repo: AbstractPriceListRepository,
        entry_repo: AbstractPriceListEntryRepository,
        assignment_repo: AbstractBusinessPartyAssignmentRepository,
        metadata_repo: AbstractGenerationMetadataRepository,
        catalog: AbstractCatalogFactsProvider,
        cache: PriceResolutionCache,
    ):
        self.session = session
        self.price_list_repo = price_list_repo
        self.entry_repo = entry_repo
        self.assignment_repo = assignment_repo
        self.metadata_repo = metadata_repo
        self.catalog = catalog
        self.cache = cache

    async def _commit(self, operation: str) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"[PriceListService] Échec du commit ({operation}): {e}", exc_info=True)
            raise PersistenceException(f"Échec de l'enregistrement ({operation}): {e}") from e

    async def _get_price_list_or_raise(self, price_list_id: int) -> PriceList:
        price_list = await self.price_list_repo.get_by_id(price_list_id)
        if price_list is None:
            raise PriceListNotFoundException(price_list_id)
        return price_list

    # --- En-têtes ---

    async def create_price_list(self, data: PriceListCreate) -> PriceListResponse:
        logger.info(f"[PriceListService] Création liste de prix: {data.name}")
        validate_window(data.valid_from, data.valid_to)
        try:
            code = await build_price_list_code(self.price_list_repo, data.name, data.code)
            payload = data.model_dump(exclude={"code"})
            payload["code"] = code
            created = await self.price_list_repo.add(payload)
            await self._commit("création liste")
        except PriceListDomainException:
            await self.session.rollback()
            raise
        self.cache.clear()
        return PriceListResponse.model_validate(created)

    async def get_price_list(self, price_list_id: int) -> Optional[PriceListResponse]:
        price_list = await self.price_list_repo.get_by_id(price_list_id)
        return PriceListResponse.model_validate(price_list) if price_list else None

    async def list_price_lists(
        self,
        limit: int,
        offset: int,
        status: Optional[PriceListStatus] = None,
        type: Optional[str] = None,
        direction: Optional[str] = None,
        event_id: Optional[int] = None,
        search_term: Optional[str] = None,
    ) -> PaginatedPriceListResponse:
        filters: Dict[str, Any] = {
            "status": status, "type": type, "direction": direction, "event_id": event_id, "q": search_term
        }
        logger.debug(f"[PriceListService] Listage listes, limit={limit}, offset={offset}, filters={filters}")
        items, total = await self.price_list_repo.list(limit, offset, filters)
        return PaginatedPriceListResponse(items=[PriceListResponse.model_validate(i) for i in items], total=total)

    async def update_price_list(self, price_list_id: int, data: PriceListUpdate) -> PriceListResponse:
        current = await self._get_price_list_or_raise(price_list_id)
        update_data = data.model_dump(exclude_unset=True)
        validate_window(update_data.get("valid_from", current.valid_from), update_data.get("valid_to", current.valid_to))
        try:
            updated = await self.price_list_repo.update(price_list_id, update_data)
            await self._commit("MAJ liste")
        except PriceListDomainException:
            await self.session.rollback()
            raise
        self.cache.clear()
        logger.info(f"[PriceListService] Liste {price_list_id} mise à jour: {list(update_data)}")
        return PriceListResponse.model_validate(updated)

    async def change_status(
        self, price_list_id: int, new_status: PriceListStatus, modified_by: Optional[str] = None
    ) -> PriceListResponse:
        current = await self._get_price_list_or_raise(price_list_id)
        if current.status == new_status:
            return PriceListResponse.model_validate(current)
        if new_status not in ALLOWED_STATUS_TRANSITIONS[current.status]:
            logger.warning(f"[PriceListService] Transition refusée {current.status.value} -> {new_status.value} (liste {price_list_id})")
            raise InvalidStatusTransitionException(current.status.value, new_status.value)
        updated = await self.price_list_repo.update(price_list_id, {"status": new_status, "modified_by": modified_by})
        await self._commit("changement statut")
        self.cache.clear()
        logger.info(f"[PriceListService] Liste {price_list_id}: {current.status.value} -> {new_status.value}")
        return PriceListResponse.model_validate(updated)

    async def get_generation_metadata(self, price_list_id: int) -> Optional[GenerationMetadataResponse]:
        metadata = await self.metadata_repo.get(price_list_id)
        return GenerationMetadataResponse.model_validate(metadata) if metadata else None

    # --- Prix de liste ---

    async def add_entry(self, price_list_id: int, data: PriceListEntryCreate) -> PriceListEntryResponse:
        await self._get_price_list_or_raise(price_list_id)
        validate_quantity_tier(data.min_quantity, data.max_quantity)
        product = await self.catalog.get_product(data.product_id)
        if product is None:
            raise ProductNotFoundException(data.product_id)

        payload = data.model_dump()
        payload["price_list_id"] = price_list_id
        payload["currency"] = data.currency or price_list_settings.DEFAULT_CURRENCY
        if payload["unit_of_measure_id"] is None:
            payload["unit_of_measure_id"] = product.unit_of_measure_id
        try:
            entry = await self.entry_repo.add(payload)
            await self._commit("ajout prix")
        except PriceListDomainException:
            await self.session.rollback()
            raise
        self.cache.invalidate_product(data.product_id)
        logger.info(f"[PriceListService] Prix ajouté: liste {price_list_id}, produit {data.product_id}, {entry.price}")
        return PriceListEntryResponse.model_validate(entry)

    async def update_entry(self, entry_id: int, data: PriceListEntryUpdate) -> PriceListEntryResponse:
        entry = await self.entry_repo.get_by_id(entry_id)
        if entry is None:
            raise PriceListEntryNotFoundException(entry_id=entry_id)
        update_data = data.model_dump(exclude_unset=True)
        validate_quantity_tier(
            update_data.get("min_quantity", entry.min_quantity),
            update_data.get("max_quantity", entry.max_quantity),
        )
        updated = await self.entry_repo.update(entry_id, update_data)
        await self._commit("MAJ prix")
        self.cache.invalidate_product(entry.product_id)
        return PriceListEntryResponse.model_validate(updated)

    async def deactivate_entry(self, entry_id: int) -> PriceListEntryResponse:
        return await self.update_entry(entry_id, PriceListEntryUpdate(status=EntryStatus.INACTIVE))

    async def list_entries(self, price_list_id: int, only_active: bool = False) -> List[PriceListEntryResponse]:
        await self._get_price_list_or_raise(price_list_id)
        entries = await self.entry_repo.list_for_price_list(price_list_id, only_active=only_active)
        return [PriceListEntryResponse.model_validate(e) for e in entries]

    # --- Assignations ---

    async def assign_business_party(
        self, price_list_id: int, data: BusinessPartyAssignmentCreate
    ) -> BusinessPartyAssignmentResponse:
        price_list = await self._get_price_list_or_raise(price_list_id)
        party = await self.catalog.get_business_party(data.business_party_id)
        if party is None:
            raise BusinessPartyNotFoundException(data.business_party_id)
        if await self.assignment_repo.get(price_list_id, data.business_party_id, only_active=False):
            raise DuplicateAssignmentException(price_list_id, data.business_party_id)

        validate_window(data.specific_valid_from, data.specific_valid_to)
        if price_list.valid_from and data.specific_valid_from and data.specific_valid_from < price_list.valid_from:
            raise InvalidDateRangeException("La validité spécifique du tiers commence avant celle de la liste.")
        if price_list.valid_to and data.specific_valid_to and data.specific_valid_to > price_list.valid_to:
            raise InvalidDateRangeException("La validité spécifique du tiers se termine après celle de la liste.")

        payload = data.model_dump()
        payload["price_list_id"] = price_list_id
        assignment = await self.assignment_repo.add(payload)
        await self._commit("assignation tiers")
        self.cache.clear()
        logger.info(f"[PriceListService] Tiers {party.id} ({party.name}) assigné à la liste {price_list_id}")
        return BusinessPartyAssignmentResponse.model_validate(assignment)

    async def remove_business_party(self, price_list_id: int, business_party_id: int) -> bool:
        """Suppression logique de l'assignation. Retourne False si elle n'existe pas."""
        assignment = await self.assignment_repo.get(price_list_id, business_party_id, only_active=False)
        if assignment is None:
            logger.warning(f"[PriceListService] Aucune assignation tiers {business_party_id} / liste {price_list_id}")
            return False
        await self.assignment_repo.set_status(assignment.id, AssignmentStatus.DELETED)
        await self._commit("retrait tiers")
        self.cache.clear()
        logger.info(f"[PriceListService] Tiers {business_party_id} retiré de la liste {price_list_id}")
        return True

    async def list_assignments(self, price_list_id: int) -> List[BusinessPartyAssignmentResponse]:
        await self._get_price_list_or_raise(price_list_id)
        assignments = await self.assignment_repo.list_for_price_list(price_list_id, only_active=False)
        return [
            BusinessPartyAssignmentResponse.model_validate(a)
            for a in assignments
            if a.status != AssignmentStatus.DELETED
        ]

    async def list_price_lists_for_party(self, business_party_id: int) -> List[PriceListResponse]:
        assignments = await self.assignment_repo.list_for_party(business_party_id)
        price_lists = await self.price_list_repo.get_many(a.price_list_id for a in assignments)
        ordered = sorted(price_lists.values(), key=lambda pl: (pl.priority, pl.created_at, pl.id))
        return [PriceListResponse.model_validate(pl) for pl in ordered]
