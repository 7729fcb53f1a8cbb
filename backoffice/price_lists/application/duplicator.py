import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.catalog.domain.providers import AbstractCatalogFactsProvider
from backoffice.core.cancellation import ensure_not_cancelled
from backoffice.price_lists.application.cache import PriceResolutionCache
from backoffice.price_lists.application.generator import finalize_price
from backoffice.price_lists.application.schemas import (
    DuplicatePriceListRequest, DuplicatePriceListResult, PriceListResponse,
    ApplyToProductsRequest, ApplyToProductsResult, ProductPriceUpdateDetail,
)
from backoffice.price_lists.application.services import build_price_list_code, validate_window
from backoffice.price_lists.constants import (
    ApplyToProductsMode, EntryStatus, DUPLICATE_DESCRIPTION_TEMPLATE,
    APPLY_REASON_UPDATED, APPLY_REASON_NOT_FOUND, APPLY_REASON_CATEGORY_FILTER,
    APPLY_REASON_NOT_HIGHER, APPLY_REASON_NOT_LOWER, APPLY_REASON_NO_EXISTING_PRICE,
    APPLY_REASON_UNCHANGED,
)
from backoffice.price_lists.domain.entities import PriceList, PriceListEntry
from backoffice.price_lists.domain.exceptions import (
    PriceListDomainException, PriceListNotFoundException, ConflictingGuardsException,
    OperationCancelledException, PersistenceException,
)
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository, AbstractPriceAuditRepository,
)

logger = logging.getLogger(__name__)

ENTRY_COPIED_FIELDS = (
    "product_id", "currency", "unit_of_measure_id", "min_quantity", "max_quantity", "score",
    "is_editable_in_frontend", "is_discountable", "status", "notes",
)
ASSIGNMENT_COPIED_FIELDS = (
    "business_party_id", "is_primary", "override_priority", "global_discount_percentage",
    "specific_valid_from", "specific_valid_to", "notes",
)


class PriceListDuplicationService:
    """Duplication d'une liste de prix et report de ses prix sur les prix par défaut des produits."""

    def __init__(
        self,
        session: AsyncSession,
        price_list_repo: AbstractPriceListRepository,
        entry_repo: AbstractPriceListEntryRepository,
        assignment_repo: AbstractBusinessPartyAssignmentRepository,
        audit_repo: AbstractPriceAuditRepository,
        catalog: AbstractCatalogFactsProvider,
        cache: PriceResolutionCache,
    ):
        self.session = session
        self.price_list_repo = price_list_repo
        self.entry_repo = entry_repo
        self.assignment_repo = assignment_repo
        self.audit_repo = audit_repo
        self.catalog = catalog
        self.cache = cache

    async def _get_price_list_or_raise(self, price_list_id: int) -> PriceList:
        price_list = await self.price_list_repo.get_by_id(price_list_id)
        if price_list is None:
            raise PriceListNotFoundException(price_list_id)
        return price_list

    async def _rollback_and_wrap(self, operation: str, error: Exception) -> None:
        await self.session.rollback()
        if isinstance(error, (PriceListDomainException, asyncio.CancelledError)):
            raise error
        logger.error(f"[PriceListDuplicationService] Échec {operation}: {error}", exc_info=True)
        raise PersistenceException(f"Échec {operation}: {error}") from error

    # --- Duplication ---

    async def duplicate_price_list(
        self, source_price_list_id: int, request: DuplicatePriceListRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> DuplicatePriceListResult:
        source = await self._get_price_list_or_raise(source_price_list_id)
        valid_from = request.new_valid_from if request.new_valid_from is not None else source.valid_from
        valid_to = request.new_valid_to if request.new_valid_to is not None else source.valid_to
        validate_window(valid_from, valid_to)
        logger.info(f"[PriceListDuplicationService] Duplication de la liste {source.id} en '{request.new_name}'")

        source_entries = await self.entry_repo.list_for_price_list(source.id) if request.copy_prices else []
        to_copy = await self._filter_entries(source_entries, request) if request.copy_prices else []
        copied_parties = 0
        try:
            ensure_not_cancelled(cancel_event, "duplication de liste")
            code = await build_price_list_code(self.price_list_repo, request.new_name, request.new_code)
            new_list = await self.price_list_repo.add({
                "name": request.new_name,
                "code": code,
                "description": request.new_description or DUPLICATE_DESCRIPTION_TEMPLATE.format(name=source.name),
                "valid_from": valid_from,
                "valid_to": valid_to,
                "priority": request.new_priority if request.new_priority is not None else source.priority,
                # Jamais copié: une seule liste par défaut doit rester effective
                "is_default": False,
                "status": request.new_status,
                "type": request.new_type or source.type,
                "direction": request.new_direction or source.direction,
                "event_id": request.new_event_id if request.new_event_id is not None else source.event_id,
                "created_by": request.created_by,
            })

            rows = []
            for entry in to_copy:
                row = {field: getattr(entry, field) for field in ENTRY_COPIED_FIELDS}
                row["price_list_id"] = new_list.id
                row["price"] = finalize_price(entry.price, request.apply_markup_percentage, request.rounding_strategy)
                rows.append(row)
            copied = await self.entry_repo.add_many(rows)

            if request.copy_business_parties:
                for assignment in await self.assignment_repo.list_for_price_list(source.id):
                    ensure_not_cancelled(cancel_event, "duplication de liste")
                    data = {field: getattr(assignment, field) for field in ASSIGNMENT_COPIED_FIELDS}
                    data.update({"price_list_id": new_list.id, "created_by": request.created_by})
                    await self.assignment_repo.add(data)
                    copied_parties += 1
            await self.session.commit()
        except (OperationCancelledException, asyncio.CancelledError, SQLAlchemyError, PriceListDomainException) as e:
            await self._rollback_and_wrap("de la duplication", e)

        self.cache.clear()
        logger.info(
            f"[PriceListDuplicationService] Liste {new_list.id} créée depuis {source.id}: "
            f"{copied}/{len(source_entries)} prix, {copied_parties} tiers"
        )
        return DuplicatePriceListResult(
            source_price_list_id=source.id,
            source_price_list_name=source.name,
            new_price_list=PriceListResponse.model_validate(new_list),
            source_price_count=len(source_entries),
            copied_price_count=copied,
            skipped_price_count=len(source_entries) - copied,
            copied_business_parties_count=copied_parties,
            applied_markup_percentage=request.apply_markup_percentage,
            applied_rounding_strategy=request.rounding_strategy,
            created_at=new_list.created_at,
            created_by=request.created_by,
        )

    async def _filter_entries(
        self, entries: List[PriceListEntry], request: DuplicatePriceListRequest
    ) -> List[PriceListEntry]:
        products = {}
        if request.filter_category_ids:
            products = await self.catalog.get_products(e.product_id for e in entries)
        kept = []
        for entry in entries:
            if request.only_active_prices and entry.status != EntryStatus.ACTIVE:
                continue
            if request.filter_product_ids and entry.product_id not in request.filter_product_ids:
                continue
            if request.filter_category_ids:
                product = products.get(entry.product_id)
                if product is None or product.category_id not in request.filter_category_ids:
                    continue
            kept.append(entry)
        return kept

    # --- Application aux produits ---

    async def apply_to_products(
        self, price_list_id: int, request: ApplyToProductsRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> ApplyToProductsResult:
        if request.only_update_if_higher and request.only_update_if_lower:
            raise ConflictingGuardsException()
        price_list = await self._get_price_list_or_raise(price_list_id)
        logger.info(f"[PriceListDuplicationService] Application de la liste {price_list_id} aux produits ({request.mode.value})")

        entries = await self.entry_repo.list_for_price_list(price_list_id, only_active=True)
        base_entries: Dict[int, PriceListEntry] = {}
        # Palier de base: quantité minimale la plus basse, puis meilleur score
        for entry in sorted(entries, key=lambda e: (e.min_quantity, -e.score, e.id)):
            if request.filter_product_ids and entry.product_id not in request.filter_product_ids:
                continue
            base_entries.setdefault(entry.product_id, entry)
        products = await self.catalog.get_products(base_entries.keys())

        details: List[ProductPriceUpdateDetail] = []
        try:
            for product_id, entry in sorted(base_entries.items()):
                ensure_not_cancelled(cancel_event, "application aux produits")
                details.append(await self._apply_entry(price_list, entry, products.get(product_id), request))
            await self.session.commit()
        except (OperationCancelledException, asyncio.CancelledError, SQLAlchemyError, PriceListDomainException) as e:
            await self._rollback_and_wrap("de l'application aux produits", e)

        self.cache.clear()
        updated = sum(1 for d in details if d.updated)
        not_found = sum(1 for d in details if d.reason == APPLY_REASON_NOT_FOUND)
        logger.info(f"[PriceListDuplicationService] Liste {price_list_id}: {updated} produit(s) mis à jour")
        return ApplyToProductsResult(
            price_list_id=price_list.id,
            price_list_name=price_list.name,
            products_updated=updated,
            products_skipped=len(details) - updated - not_found,
            products_not_found=not_found,
            backup_created=request.create_backup and updated > 0,
            details=details,
            applied_at=datetime.utcnow(),
            applied_by=request.applied_by,
        )

    async def _apply_entry(
        self, price_list: PriceList, entry: PriceListEntry, product, request: ApplyToProductsRequest
    ) -> ProductPriceUpdateDetail:
        if product is None:
            return ProductPriceUpdateDetail(
                product_id=entry.product_id, new_price=entry.price, updated=False, reason=APPLY_REASON_NOT_FOUND
            )

        old_price = product.default_price

        def skipped(reason: str) -> ProductPriceUpdateDetail:
            return ProductPriceUpdateDetail(
                product_id=product.id, product_code=product.code, product_name=product.name,
                old_price=old_price, new_price=entry.price, updated=False, reason=reason,
            )

        if request.filter_category_ids and product.category_id not in request.filter_category_ids:
            return skipped(APPLY_REASON_CATEGORY_FILTER)
        if request.mode == ApplyToProductsMode.UPDATE_EXISTING and (old_price is None or old_price <= 0):
            return skipped(APPLY_REASON_NO_EXISTING_PRICE)
        if old_price is not None:
            if request.only_update_if_higher and entry.price <= old_price:
                return skipped(APPLY_REASON_NOT_HIGHER)
            if request.only_update_if_lower and entry.price >= old_price:
                return skipped(APPLY_REASON_NOT_LOWER)
            if entry.price == old_price:
                return skipped(APPLY_REASON_UNCHANGED)

        if request.create_backup:
            await self.audit_repo.add({
                "entity_name": "Product",
                "entity_id": product.id,
                "property_name": "default_price",
                "old_value": old_price,
                "new_value": entry.price,
                "price_list_id": price_list.id,
                "changed_by": request.applied_by,
            })
        await self.catalog.set_default_price(product.id, entry.price)
        return ProductPriceUpdateDetail(
            product_id=product.id, product_code=product.code, product_name=product.name,
            old_price=old_price, new_price=entry.price, updated=True, reason=APPLY_REASON_UPDATED,
        )
