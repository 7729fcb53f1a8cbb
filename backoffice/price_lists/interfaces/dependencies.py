import logging
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.database import get_db_session
from backoffice.catalog.domain.providers import AbstractCatalogFactsProvider, AbstractDocumentHistoryProvider
from backoffice.catalog.infrastructure.persistence import (
    SQLAlchemyCatalogFactsProvider, SQLAlchemyDocumentHistoryProvider
)
from backoffice.price_lists.config import price_list_settings
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository, AbstractGenerationMetadataRepository,
    AbstractPriceAuditRepository,
)
from backoffice.price_lists.infrastructure.persistence import (
    SQLAlchemyPriceListRepository, SQLAlchemyPriceListEntryRepository,
    SQLAlchemyBusinessPartyAssignmentRepository, SQLAlchemyGenerationMetadataRepository,
    SQLAlchemyPriceAuditRepository,
)
from backoffice.price_lists.application.cache import PriceResolutionCache, price_resolution_cache
from backoffice.price_lists.application.services import PriceListService
from backoffice.price_lists.application.resolver import PriceResolutionService
from backoffice.price_lists.application.validator import PrecedenceValidationService
from backoffice.price_lists.application.bulk_update import BulkUpdateService
from backoffice.price_lists.application.generator import PriceListGenerationService
from backoffice.price_lists.application.duplicator import PriceListDuplicationService

logger = logging.getLogger(__name__)

SessionDep = Annotated[AsyncSession, Depends(get_db_session)]

# --- Repositories et fournisseurs ---

def get_price_list_repository(db: SessionDep) -> AbstractPriceListRepository:
    return SQLAlchemyPriceListRepository(session=db)

def get_entry_repository(db: SessionDep) -> AbstractPriceListEntryRepository:
    return SQLAlchemyPriceListEntryRepository(session=db)

def get_assignment_repository(db: SessionDep) -> AbstractBusinessPartyAssignmentRepository:
    return SQLAlchemyBusinessPartyAssignmentRepository(session=db)

def get_metadata_repository(db: SessionDep) -> AbstractGenerationMetadataRepository:
    return SQLAlchemyGenerationMetadataRepository(session=db)

def get_audit_repository(db: SessionDep) -> AbstractPriceAuditRepository:
    return SQLAlchemyPriceAuditRepository(session=db)

def get_catalog_provider(db: SessionDep) -> AbstractCatalogFactsProvider:
    """Injecte le fournisseur de faits catalogue (produits, unités, TVA, tiers)."""
    return SQLAlchemyCatalogFactsProvider(session=db)

def get_document_history_provider(db: SessionDep) -> AbstractDocumentHistoryProvider:
    """Injecte le fournisseur d'historique des documents d'achat."""
    return SQLAlchemyDocumentHistoryProvider(session=db, page_size=price_list_settings.PURCHASE_LINES_PAGE_SIZE)

def get_resolution_cache() -> PriceResolutionCache:
    return price_resolution_cache

PriceListRepositoryDep = Annotated[AbstractPriceListRepository, Depends(get_price_list_repository)]
EntryRepositoryDep = Annotated[AbstractPriceListEntryRepository, Depends(get_entry_repository)]
AssignmentRepositoryDep = Annotated[AbstractBusinessPartyAssignmentRepository, Depends(get_assignment_repository)]
MetadataRepositoryDep = Annotated[AbstractGenerationMetadataRepository, Depends(get_metadata_repository)]
AuditRepositoryDep = Annotated[AbstractPriceAuditRepository, Depends(get_audit_repository)]
CatalogProviderDep = Annotated[AbstractCatalogFactsProvider, Depends(get_catalog_provider)]
DocumentHistoryDep = Annotated[AbstractDocumentHistoryProvider, Depends(get_document_history_provider)]
ResolutionCacheDep = Annotated[PriceResolutionCache, Depends(get_resolution_cache)]

# --- Services ---

def get_price_list_service(
    db: SessionDep,
    price_list_repo: PriceListRepositoryDep,
    entry_repo: EntryRepositoryDep,
    assignment_repo: AssignmentRepositoryDep,
    metadata_repo: MetadataRepositoryDep,
    catalog: CatalogProviderDep,
    cache: ResolutionCacheDep,
) -> PriceListService:
    logger.debug("Fourniture de PriceListService")
    return PriceListService(
        session=db,
        price_list_repo=price_list_repo,
        entry_repo=entry_repo,
        assignment_repo=assignment_repo,
        metadata_repo=metadata_repo,
        catalog=catalog,
        cache=cache,
    )

def get_resolution_service(
    price_list_repo: PriceListRepositoryDep,
    entry_repo: EntryRepositoryDep,
    assignment_repo: AssignmentRepositoryDep,
    catalog: CatalogProviderDep,
    cache: ResolutionCacheDep,
) -> PriceResolutionService:
    logger.debug("Fourniture de PriceResolutionService")
    return PriceResolutionService(
        price_list_repo=price_list_repo,
        entry_repo=entry_repo,
        assignment_repo=assignment_repo,
        catalog=catalog,
        cache=cache,
    )

def get_validation_service(
    price_list_repo: PriceListRepositoryDep,
    entry_repo: EntryRepositoryDep,
    assignment_repo: AssignmentRepositoryDep,
) -> PrecedenceValidationService:
    return PrecedenceValidationService(
        price_list_repo=price_list_repo, entry_repo=entry_repo, assignment_repo=assignment_repo
    )

def get_bulk_update_service(
    db: SessionDep,
    price_list_repo: PriceListRepositoryDep,
    entry_repo: EntryRepositoryDep,
    catalog: CatalogProviderDep,
    cache: ResolutionCacheDep,
) -> BulkUpdateService:
    return BulkUpdateService(
        session=db, price_list_repo=price_list_repo, entry_repo=entry_repo, catalog=catalog, cache=cache
    )

def get_generation_service(
    db: SessionDep,
    price_list_repo: PriceListRepositoryDep,
    entry_repo: EntryRepositoryDep,
    assignment_repo: AssignmentRepositoryDep,
    metadata_repo: MetadataRepositoryDep,
    catalog: CatalogProviderDep,
    documents: DocumentHistoryDep,
    cache: ResolutionCacheDep,
) -> PriceListGenerationService:
    logger.debug("Fourniture de PriceListGenerationService")
    return PriceListGenerationService(
        session=db,
        price_list_repo=price_list_repo,
        entry_repo=entry_repo,
        assignment_repo=assignment_repo,
        metadata_repo=metadata_repo,
        catalog=catalog,
        documents=documents,
        cache=cache,
    )

def get_duplication_service(
    db: SessionDep,
    price_list_repo: PriceListRepositoryDep,
    entry_repo: EntryRepositoryDep,
    assignment_repo: AssignmentRepositoryDep,
    audit_repo: AuditRepositoryDep,
    catalog: CatalogProviderDep,
    cache: ResolutionCacheDep,
) -> PriceListDuplicationService:
    return PriceListDuplicationService(
        session=db,
        price_list_repo=price_list_repo,
        entry_repo=entry_repo,
        assignment_repo=assignment_repo,
        audit_repo=audit_repo,
        catalog=catalog,
        cache=cache,
    )

PriceListServiceDep = Annotated[PriceListService, Depends(get_price_list_service)]
ResolutionServiceDep = Annotated[PriceResolutionService, Depends(get_resolution_service)]
ValidationServiceDep = Annotated[PrecedenceValidationService, Depends(get_validation_service)]
BulkUpdateServiceDep = Annotated[BulkUpdateService, Depends(get_bulk_update_service)]
GenerationServiceDep = Annotated[PriceListGenerationService, Depends(get_generation_service)]
DuplicationServiceDep = Annotated[PriceListDuplicationService, Depends(get_duplication_service)]
