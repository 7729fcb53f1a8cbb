import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, status, Query, Path, Response

from backoffice.config import settings
from backoffice.price_lists.constants import PriceListStatus, PriceListType, PriceListDirection
from backoffice.price_lists.application.schemas import (
    PriceListCreate, PriceListUpdate, PriceListStatusUpdate, PriceListResponse, PaginatedPriceListResponse,
    GenerationMetadataResponse, PriceListEntryCreate, PriceListEntryUpdate, PriceListEntryResponse,
    BusinessPartyAssignmentCreate, BusinessPartyAssignmentResponse,
    PriceResolutionRequest, PriceResolutionResult, PrecedenceValidationResult,
    BulkUpdateRequest, BulkUpdatePreview, BulkUpdateResult,
    GenerateFromProductsRequest, GenerateFromPurchasesRequest, GeneratePriceListPreview,
    PriceListGenerationResult, UpdateFromPurchasesRequest, UpdateFromPurchasesResult,
    DuplicatePriceListRequest, DuplicatePriceListResult, ApplyToProductsRequest, ApplyToProductsResult,
)
from backoffice.price_lists.domain.exceptions import (
    PriceListDomainException, PriceListValidationError, PriceListNotFoundError, PriceListConflictError,
)
from backoffice.price_lists.interfaces.dependencies import (
    PriceListServiceDep, ResolutionServiceDep, ValidationServiceDep, BulkUpdateServiceDep,
    GenerationServiceDep, DuplicationServiceDep,
)

logger = logging.getLogger(__name__)

price_list_router = APIRouter(
    prefix="/price-lists",
    tags=["Price Lists"],
)


def _to_http_exception(e: PriceListDomainException) -> HTTPException:
    """Traduit une exception du domaine en réponse HTTP selon sa catégorie."""
    if isinstance(e, PriceListValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    if isinstance(e, PriceListNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    if isinstance(e, PriceListConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    logger.error(f"Erreur API listes de prix: {e}", exc_info=True)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


# --- Résolution et validation ---
# Déclarées avant /{price_list_id} pour éviter toute ambiguïté de routage

@price_list_router.post("/resolve", response_model=PriceResolutionResult)
async def resolve_price(request: PriceResolutionRequest, resolution_service: ResolutionServiceDep):
    """Résout le prix effectif d'un produit pour un tiers, une quantité et une date."""
    try:
        return await resolution_service.resolve_price(request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.get("/validation", response_model=PrecedenceValidationResult)
async def validate_precedence(
    validation_service: ValidationServiceDep,
    scope_id: Optional[int] = Query(None, description="Événement à auditer; global si absent"),
):
    return await validation_service.validate_precedence(scope_id=scope_id)


@price_list_router.get("/business-parties/{business_party_id}/price-lists", response_model=List[PriceListResponse])
async def list_price_lists_for_party(
    price_list_service: PriceListServiceDep,
    business_party_id: int = Path(..., ge=1),
):
    return await price_list_service.list_price_lists_for_party(business_party_id)


# --- Génération ---

@price_list_router.post("/generate/from-products", response_model=PriceListGenerationResult, status_code=status.HTTP_201_CREATED)
async def generate_from_products(request: GenerateFromProductsRequest, generation_service: GenerationServiceDep):
    logger.info(f"API generate_from_products: {request.name}")
    try:
        return await generation_service.generate_from_products(request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/generate/from-purchases/preview", response_model=GeneratePriceListPreview)
async def preview_from_purchases(request: GenerateFromPurchasesRequest, generation_service: GenerationServiceDep):
    try:
        return await generation_service.preview_from_purchases(request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/generate/from-purchases", response_model=PriceListGenerationResult, status_code=status.HTTP_201_CREATED)
async def generate_from_purchases(request: GenerateFromPurchasesRequest, generation_service: GenerationServiceDep):
    logger.info(f"API generate_from_purchases: {request.name}, fournisseur {request.supplier_id}")
    try:
        return await generation_service.generate_from_purchases(request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


# --- Listes de prix (CRUD) ---

@price_list_router.get("", response_model=PaginatedPriceListResponse)
async def list_price_lists(
    price_list_service: PriceListServiceDep,
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    status_filter: Optional[PriceListStatus] = Query(None, alias="status"),
    type_filter: Optional[PriceListType] = Query(None, alias="type"),
    direction: Optional[PriceListDirection] = Query(None),
    event_id: Optional[int] = Query(None),
    q: Optional[str] = Query(None, description="Recherche sur le nom ou le code"),
):
    logger.info(f"API list_price_lists: limit={limit}, offset={offset}, status={status_filter}, q={q}")
    return await price_list_service.list_price_lists(
        limit=limit, offset=offset, status=status_filter, type=type_filter,
        direction=direction, event_id=event_id, search_term=q,
    )


@price_list_router.post("", response_model=PriceListResponse, status_code=status.HTTP_201_CREATED)
async def create_price_list(data: PriceListCreate, price_list_service: PriceListServiceDep):
    try:
        return await price_list_service.create_price_list(data)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.get("/{price_list_id}", response_model=PriceListResponse)
async def get_price_list(price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)):
    price_list = await price_list_service.get_price_list(price_list_id)
    if price_list is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Liste de prix {price_list_id} non trouvée.")
    return price_list


@price_list_router.patch("/{price_list_id}", response_model=PriceListResponse)
async def update_price_list(
    data: PriceListUpdate, price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await price_list_service.update_price_list(price_list_id, data)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/{price_list_id}/status", response_model=PriceListResponse)
async def change_status(
    data: PriceListStatusUpdate, price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await price_list_service.change_status(price_list_id, data.status, modified_by=data.modified_by)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.get("/{price_list_id}/generation-metadata", response_model=GenerationMetadataResponse)
async def get_generation_metadata(price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)):
    metadata = await price_list_service.get_generation_metadata(price_list_id)
    if metadata is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Aucune métadonnée de génération pour cette liste.")
    return metadata


# --- Prix de liste ---

@price_list_router.get("/{price_list_id}/entries", response_model=List[PriceListEntryResponse])
async def list_entries(
    price_list_service: PriceListServiceDep,
    price_list_id: int = Path(..., ge=1),
    only_active: bool = Query(False),
):
    try:
        return await price_list_service.list_entries(price_list_id, only_active=only_active)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/{price_list_id}/entries", response_model=PriceListEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_entry(
    data: PriceListEntryCreate, price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await price_list_service.add_entry(price_list_id, data)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.patch("/entries/{entry_id}", response_model=PriceListEntryResponse)
async def update_entry(data: PriceListEntryUpdate, price_list_service: PriceListServiceDep, entry_id: int = Path(..., ge=1)):
    try:
        return await price_list_service.update_entry(entry_id, data)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.delete("/entries/{entry_id}", response_model=PriceListEntryResponse)
async def deactivate_entry(price_list_service: PriceListServiceDep, entry_id: int = Path(..., ge=1)):
    """Désactive un prix de liste (aucune suppression physique)."""
    try:
        return await price_list_service.deactivate_entry(entry_id)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


# --- Tiers assignés ---

@price_list_router.get("/{price_list_id}/business-parties", response_model=List[BusinessPartyAssignmentResponse])
async def list_assignments(price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)):
    try:
        return await price_list_service.list_assignments(price_list_id)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post(
    "/{price_list_id}/business-parties",
    response_model=BusinessPartyAssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_business_party(
    data: BusinessPartyAssignmentCreate, price_list_service: PriceListServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await price_list_service.assign_business_party(price_list_id, data)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.delete("/{price_list_id}/business-parties/{business_party_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_business_party(
    price_list_service: PriceListServiceDep,
    price_list_id: int = Path(..., ge=1),
    business_party_id: int = Path(..., ge=1),
):
    removed = await price_list_service.remove_business_party(price_list_id, business_party_id)
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Assignation non trouvée.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Opérations sur une liste ---

@price_list_router.post("/{price_list_id}/bulk-update/preview", response_model=BulkUpdatePreview)
async def preview_bulk_update(
    request: BulkUpdateRequest, bulk_service: BulkUpdateServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await bulk_service.preview_bulk_update(price_list_id, request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/{price_list_id}/bulk-update", response_model=BulkUpdateResult)
async def apply_bulk_update(
    request: BulkUpdateRequest, bulk_service: BulkUpdateServiceDep, price_list_id: int = Path(..., ge=1)
):
    logger.info(f"API apply_bulk_update: liste {price_list_id}, {request.operation.value} {request.value}")
    try:
        return await bulk_service.apply_bulk_update(price_list_id, request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/{price_list_id}/update-from-purchases", response_model=UpdateFromPurchasesResult)
async def update_from_purchases(
    request: UpdateFromPurchasesRequest, generation_service: GenerationServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await generation_service.update_from_purchases(price_list_id, request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/{price_list_id}/duplicate", response_model=DuplicatePriceListResult, status_code=status.HTTP_201_CREATED)
async def duplicate_price_list(
    request: DuplicatePriceListRequest, duplication_service: DuplicationServiceDep, price_list_id: int = Path(..., ge=1)
):
    try:
        return await duplication_service.duplicate_price_list(price_list_id, request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)


@price_list_router.post("/{price_list_id}/apply-to-products", response_model=ApplyToProductsResult)
async def apply_to_products(
    request: ApplyToProductsRequest, duplication_service: DuplicationServiceDep, price_list_id: int = Path(..., ge=1)
):
    logger.info(f"API apply_to_products: liste {price_list_id}, mode {request.mode.value}")
    try:
        return await duplication_service.apply_to_products(price_list_id, request)
    except PriceListDomainException as e:
        raise _to_http_exception(e)
