import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple, Iterable, Set

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.price_lists import models
from backoffice.price_lists.constants import (
    PriceListStatus, PriceListDirection, EntryStatus, AssignmentStatus
)
from backoffice.price_lists.domain.entities import (
    PriceList, PriceListEntry, BusinessPartyAssignment, GenerationMetadata, PriceAuditRecord
)
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository, AbstractGenerationMetadataRepository,
    AbstractPriceAuditRepository
)
from backoffice.price_lists.domain.exceptions import (
    PriceListNotFoundException, PriceListEntryNotFoundException, AssignmentNotFoundException,
    DuplicatePriceListCodeException, PersistenceException
)

logger = logging.getLogger(__name__)


def _to_columns(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convertit les énumérations en leur valeur de colonne."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


class SQLAlchemyPriceListRepository(AbstractPriceListRepository):
    """Implémentation SQLAlchemy du repository des en-têtes de listes de prix."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_db(self, price_list_id: int) -> models.PriceList:
        price_list_db = await self.session.get(models.PriceList, price_list_id)
        if price_list_db is None:
            raise PriceListNotFoundException(price_list_id)
        return price_list_db

    async def get_by_id(self, price_list_id: int) -> Optional[PriceList]:
        price_list_db = await self.session.get(models.PriceList, price_list_id)
        if price_list_db is None:
            logger.debug(f"Liste de prix ID {price_list_id} non trouvée.")
            return None
        return PriceList.model_validate(price_list_db)

    async def get_by_code(self, code: str) -> Optional[PriceList]:
        stmt = select(models.PriceList).where(models.PriceList.code == code)
        result = await self.session.execute(stmt)
        price_list_db = result.scalar_one_or_none()
        return PriceList.model_validate(price_list_db) if price_list_db else None

    async def list_codes_starting_with(self, prefix: str) -> List[str]:
        stmt = select(models.PriceList.code).where(models.PriceList.code.startswith(prefix))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_many(self, price_list_ids: Iterable[int]) -> Dict[int, PriceList]:
        ids = list(set(price_list_ids))
        if not ids:
            return {}
        stmt = select(models.PriceList).where(models.PriceList.id.in_(ids))
        result = await self.session.execute(stmt)
        return {pl.id: PriceList.model_validate(pl) for pl in result.scalars().all()}

    async def list(self, limit: int, offset: int, filters: Optional[Dict[str, Any]] = None) -> Tuple[List[PriceList], int]:
        stmt_select = select(models.PriceList)
        stmt_count = select(func.count(models.PriceList.id)).select_from(models.PriceList)

        for field, value in _to_columns(filters or {}).items():
            if value is None:
                continue
            if field == "q":
                search_term = f"%{value}%"
                condition = or_(models.PriceList.name.ilike(search_term), models.PriceList.code.ilike(search_term))
            elif hasattr(models.PriceList, field):
                condition = getattr(models.PriceList, field) == value
            else:
                logger.warning(f"Filtre ignoré car champ '{field}' inconnu pour PriceList.")
                continue
            stmt_select = stmt_select.where(condition)
            stmt_count = stmt_count.where(condition)

        stmt_select = stmt_select.order_by(models.PriceList.priority.asc(), models.PriceList.id.asc())
        stmt_select = stmt_select.offset(offset).limit(limit)

        total = (await self.session.execute(stmt_count)).scalar_one()
        result = await self.session.execute(stmt_select)
        return [PriceList.model_validate(pl) for pl in result.scalars().all()], total

    async def list_by_status(
        self,
        statuses: Optional[List[PriceListStatus]] = None,
        direction: Optional[PriceListDirection] = None,
    ) -> List[PriceList]:
        stmt = select(models.PriceList)
        if statuses:
            stmt = stmt.where(models.PriceList.status.in_([s.value for s in statuses]))
        if direction is not None:
            stmt = stmt.where(models.PriceList.direction == direction.value)
        stmt = stmt.order_by(models.PriceList.priority, models.PriceList.created_at, models.PriceList.id)
        result = await self.session.execute(stmt)
        return [PriceList.model_validate(pl) for pl in result.scalars().all()]

    async def list_for_event(self, event_id: Optional[int]) -> List[PriceList]:
        stmt = select(models.PriceList)
        if event_id is None:
            stmt = stmt.where(models.PriceList.event_id.is_(None))
        else:
            stmt = stmt.where(models.PriceList.event_id == event_id)
        stmt = stmt.order_by(models.PriceList.priority, models.PriceList.created_at, models.PriceList.id)
        result = await self.session.execute(stmt)
        return [PriceList.model_validate(pl) for pl in result.scalars().all()]

    async def add(self, data: Dict[str, Any]) -> PriceList:
        price_list_db = models.PriceList(**_to_columns(data))
        self.session.add(price_list_db)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Erreur d'intégrité à la création de la liste '{data.get('code')}': {e}", exc_info=True)
            raise DuplicatePriceListCodeException(data.get("code", "")) from e
        await self.session.refresh(price_list_db)
        logger.info(f"Liste de prix créée: ID {price_list_db.id} ({price_list_db.code})")
        return PriceList.model_validate(price_list_db)

    async def update(self, price_list_id: int, data: Dict[str, Any]) -> PriceList:
        price_list_db = await self._get_db(price_list_id)
        for key, value in _to_columns(data).items():
            setattr(price_list_db, key, value)
        price_list_db.modified_at = datetime.utcnow()
        self.session.add(price_list_db)
        try:
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.error(f"Erreur d'intégrité à la MAJ de la liste {price_list_id}: {e}", exc_info=True)
            raise DuplicatePriceListCodeException(data.get("code", "")) from e
        await self.session.refresh(price_list_db)
        return PriceList.model_validate(price_list_db)


class SQLAlchemyPriceListEntryRepository(AbstractPriceListEntryRepository):
    """Implémentation SQLAlchemy du repository des prix de liste."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_db(self, entry_id: int) -> models.PriceListEntry:
        entry_db = await self.session.get(models.PriceListEntry, entry_id)
        if entry_db is None:
            raise PriceListEntryNotFoundException(entry_id=entry_id)
        return entry_db

    async def get_by_id(self, entry_id: int) -> Optional[PriceListEntry]:
        entry_db = await self.session.get(models.PriceListEntry, entry_id)
        return PriceListEntry.model_validate(entry_db) if entry_db else None

    async def list_for_price_list(self, price_list_id: int, only_active: bool = False) -> List[PriceListEntry]:
        stmt = select(models.PriceListEntry).where(models.PriceListEntry.price_list_id == price_list_id)
        if only_active:
            stmt = stmt.where(models.PriceListEntry.status == EntryStatus.ACTIVE.value)
        stmt = stmt.order_by(models.PriceListEntry.product_id, models.PriceListEntry.min_quantity, models.PriceListEntry.id)
        result = await self.session.execute(stmt)
        return [PriceListEntry.model_validate(e) for e in result.scalars().all()]

    async def list_for_product(
        self, product_id: int, price_list_ids: Optional[Iterable[int]] = None, only_active: bool = True
    ) -> List[PriceListEntry]:
        stmt = select(models.PriceListEntry).where(models.PriceListEntry.product_id == product_id)
        if price_list_ids is not None:
            stmt = stmt.where(models.PriceListEntry.price_list_id.in_(list(price_list_ids)))
        if only_active:
            stmt = stmt.where(models.PriceListEntry.status == EntryStatus.ACTIVE.value)
        stmt = stmt.order_by(models.PriceListEntry.id)
        result = await self.session.execute(stmt)
        return [PriceListEntry.model_validate(e) for e in result.scalars().all()]

    async def list_active_for_price_lists(self, price_list_ids: Iterable[int]) -> List[PriceListEntry]:
        ids = list(price_list_ids)
        if not ids:
            return []
        stmt = (
            select(models.PriceListEntry)
            .where(models.PriceListEntry.price_list_id.in_(ids))
            .where(models.PriceListEntry.status == EntryStatus.ACTIVE.value)
            .order_by(models.PriceListEntry.id)
        )
        result = await self.session.execute(stmt)
        return [PriceListEntry.model_validate(e) for e in result.scalars().all()]

    async def add(self, data: Dict[str, Any]) -> PriceListEntry:
        entry_db = models.PriceListEntry(**_to_columns(data))
        self.session.add(entry_db)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Erreur DB à l'ajout d'un prix (liste {data.get('price_list_id')}): {e}", exc_info=True)
            raise PersistenceException(f"Erreur d'écriture du prix de liste: {e}") from e
        await self.session.refresh(entry_db)
        return PriceListEntry.model_validate(entry_db)

    async def add_many(self, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        self.session.add_all([models.PriceListEntry(**_to_columns(row)) for row in rows])
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Erreur DB à l'ajout de {len(rows)} prix: {e}", exc_info=True)
            raise PersistenceException(f"Erreur d'écriture des prix de liste: {e}") from e
        return len(rows)

    async def update(self, entry_id: int, data: Dict[str, Any]) -> PriceListEntry:
        entry_db = await self._get_db(entry_id)
        for key, value in _to_columns(data).items():
            setattr(entry_db, key, value)
        entry_db.modified_at = datetime.utcnow()
        self.session.add(entry_db)
        await self.session.flush()
        await self.session.refresh(entry_db)
        return PriceListEntry.model_validate(entry_db)

    async def update_price(self, entry_id: int, price: Decimal) -> PriceListEntry:
        return await self.update(entry_id, {"price": price})


class SQLAlchemyBusinessPartyAssignmentRepository(AbstractBusinessPartyAssignmentRepository):
    """Implémentation SQLAlchemy des assignations liste/tiers."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, price_list_id: int, business_party_id: int, only_active: bool = True) -> Optional[BusinessPartyAssignment]:
        stmt = select(models.PriceListBusinessParty).where(
            models.PriceListBusinessParty.price_list_id == price_list_id,
            models.PriceListBusinessParty.business_party_id == business_party_id,
        )
        if only_active:
            stmt = stmt.where(models.PriceListBusinessParty.status == AssignmentStatus.ACTIVE.value)
        else:
            stmt = stmt.where(models.PriceListBusinessParty.status != AssignmentStatus.DELETED.value)
        result = await self.session.execute(stmt.order_by(models.PriceListBusinessParty.id.desc()))
        assignment_db = result.scalars().first()
        return BusinessPartyAssignment.model_validate(assignment_db) if assignment_db else None

    async def list_for_price_list(self, price_list_id: int, only_active: bool = True) -> List[BusinessPartyAssignment]:
        stmt = select(models.PriceListBusinessParty).where(models.PriceListBusinessParty.price_list_id == price_list_id)
        if only_active:
            stmt = stmt.where(models.PriceListBusinessParty.status == AssignmentStatus.ACTIVE.value)
        result = await self.session.execute(stmt.order_by(models.PriceListBusinessParty.id))
        return [BusinessPartyAssignment.model_validate(a) for a in result.scalars().all()]

    async def list_for_party(self, business_party_id: int, only_active: bool = True) -> List[BusinessPartyAssignment]:
        stmt = select(models.PriceListBusinessParty).where(
            models.PriceListBusinessParty.business_party_id == business_party_id
        )
        if only_active:
            stmt = stmt.where(models.PriceListBusinessParty.status == AssignmentStatus.ACTIVE.value)
        result = await self.session.execute(stmt.order_by(models.PriceListBusinessParty.id))
        return [BusinessPartyAssignment.model_validate(a) for a in result.scalars().all()]

    async def list_active(self) -> List[BusinessPartyAssignment]:
        stmt = select(models.PriceListBusinessParty).where(
            models.PriceListBusinessParty.status == AssignmentStatus.ACTIVE.value
        )
        result = await self.session.execute(stmt.order_by(models.PriceListBusinessParty.id))
        return [BusinessPartyAssignment.model_validate(a) for a in result.scalars().all()]

    async def price_list_ids_with_active_assignments(self) -> Set[int]:
        stmt = select(models.PriceListBusinessParty.price_list_id).where(
            models.PriceListBusinessParty.status == AssignmentStatus.ACTIVE.value
        ).distinct()
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def add(self, data: Dict[str, Any]) -> BusinessPartyAssignment:
        assignment_db = models.PriceListBusinessParty(**_to_columns(data))
        self.session.add(assignment_db)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Erreur DB à l'assignation du tiers {data.get('business_party_id')}: {e}", exc_info=True)
            raise PersistenceException(f"Erreur d'écriture de l'assignation: {e}") from e
        await self.session.refresh(assignment_db)
        return BusinessPartyAssignment.model_validate(assignment_db)

    async def set_status(self, assignment_id: int, status: AssignmentStatus) -> BusinessPartyAssignment:
        assignment_db = await self.session.get(models.PriceListBusinessParty, assignment_id)
        if assignment_db is None:
            raise AssignmentNotFoundException(assignment_id=assignment_id)
        assignment_db.status = status.value
        self.session.add(assignment_db)
        await self.session.flush()
        await self.session.refresh(assignment_db)
        return BusinessPartyAssignment.model_validate(assignment_db)


class SQLAlchemyGenerationMetadataRepository(AbstractGenerationMetadataRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, data: Dict[str, Any]) -> GenerationMetadata:
        metadata_db = models.PriceListGenerationMetadata(**_to_columns(data))
        self.session.add(metadata_db)
        await self.session.flush()
        await self.session.refresh(metadata_db)
        return GenerationMetadata.model_validate(metadata_db)

    async def get(self, price_list_id: int) -> Optional[GenerationMetadata]:
        metadata_db = await self.session.get(models.PriceListGenerationMetadata, price_list_id)
        return GenerationMetadata.model_validate(metadata_db) if metadata_db else None


class SQLAlchemyPriceAuditRepository(AbstractPriceAuditRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, data: Dict[str, Any]) -> PriceAuditRecord:
        audit_db = models.PriceAuditLog(**_to_columns(data))
        self.session.add(audit_db)
        await self.session.flush()
        await self.session.refresh(audit_db)
        return PriceAuditRecord.model_validate(audit_db)

    async def list_for_entity(self, entity_id: int, entity_name: str = "Product") -> List[PriceAuditRecord]:
        stmt = (
            select(models.PriceAuditLog)
            .where(models.PriceAuditLog.entity_id == entity_id, models.PriceAuditLog.entity_name == entity_name)
            .order_by(models.PriceAuditLog.id)
        )
        result = await self.session.execute(stmt)
        return [PriceAuditRecord.model_validate(a) for a in result.scalars().all()]
