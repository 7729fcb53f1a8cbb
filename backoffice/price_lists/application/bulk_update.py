import asyncio
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.catalog.domain.providers import AbstractCatalogFactsProvider
from backoffice.core.cancellation import ensure_not_cancelled
from backoffice.price_lists.application.cache import PriceResolutionCache
from backoffice.price_lists.application.schemas import (
    BulkUpdateRequest, BulkUpdatePreview, BulkUpdatePreviewItem, BulkUpdateItemResult, BulkUpdateResult
)
from backoffice.price_lists.constants import CENT, ZERO, HUNDRED
from backoffice.price_lists.domain.entities import PriceList, PriceListEntry
from backoffice.price_lists.domain.exceptions import (
    PriceListNotFoundException, InvalidPriceRequestException, OperationCancelledException,
    PriceListDomainException,
)
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository
)
from backoffice.price_lists.utils import compute_new_price, percentage_change

logger = logging.getLogger(__name__)


class BulkUpdateService:
    """Mise à jour massive des prix d'une liste: aperçu sans effet de bord, puis application atomique."""

    def __init__(
        self,
        session: AsyncSession,
        price_list_repo: AbstractPriceListRepository,
        entry_repo: AbstractPriceListEntryRepository,
        catalog: AbstractCatalogFactsProvider,
        cache: PriceResolutionCache,
    ):
        self.session = session
        self.price_list_repo = price_list_repo
        self.entry_repo = entry_repo
        self.catalog = catalog
        self.cache = cache

    async def preview_bulk_update(
        self, price_list_id: int, request: BulkUpdateRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> BulkUpdatePreview:
        price_list, items = await self._compute(price_list_id, request, cancel_event)
        logger.info(f"[BulkUpdateService] Aperçu liste {price_list_id}: {len(items)} prix concernés ({request.operation.value} {request.value})")
        return self._build_preview(price_list, request, items)

    async def apply_bulk_update(
        self, price_list_id: int, request: BulkUpdateRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> BulkUpdateResult:
        # Même chemin de calcul que l'aperçu
        _, items = await self._compute(price_list_id, request, cancel_event)
        logger.info(f"[BulkUpdateService] Application sur la liste {price_list_id}: {len(items)} prix")

        results: List[BulkUpdateItemResult] = []
        try:
            for item in items:
                ensure_not_cancelled(cancel_event, "mise à jour massive")
                try:
                    await self.entry_repo.update_price(item.entry_id, item.new_price)
                except (SQLAlchemyError, PriceListDomainException) as e:
                    logger.error(f"[BulkUpdateService] Échec MAJ prix {item.entry_id}: {e}", exc_info=True)
                    results.append(self._item_result(item, success=False, error=str(e)))
                    return await self._rolled_back(price_list_id, request, items, results, str(e))
                results.append(self._item_result(item, success=True))
            await self.session.commit()
        except (OperationCancelledException, asyncio.CancelledError):
            await self.session.rollback()
            logger.warning(f"[BulkUpdateService] Mise à jour massive annulée sur la liste {price_list_id}, rollback.")
            raise
        except SQLAlchemyError as e:
            logger.error(f"[BulkUpdateService] Échec du commit sur la liste {price_list_id}: {e}", exc_info=True)
            return await self._rolled_back(price_list_id, request, items, [], str(e))

        self.cache.clear()
        logger.info(f"[BulkUpdateService] {len(results)} prix mis à jour sur la liste {price_list_id}")
        return BulkUpdateResult(
            price_list_id=price_list_id,
            updated_count=len(results),
            failed_count=0,
            rolled_back=False,
            items=results,
            updated_at=datetime.utcnow(),
            updated_by=request.updated_by,
        )

    # --- Calcul commun ---

    async def _compute(
        self, price_list_id: int, request: BulkUpdateRequest, cancel_event: Optional[asyncio.Event]
    ) -> Tuple[PriceList, List[BulkUpdatePreviewItem]]:
        ensure_not_cancelled(cancel_event, "calcul de mise à jour massive")
        if request.min_price is not None and request.max_price is not None and request.min_price > request.max_price:
            raise InvalidPriceRequestException("Le prix minimum du filtre dépasse le prix maximum.")

        price_list = await self.price_list_repo.get_by_id(price_list_id)
        if price_list is None:
            raise PriceListNotFoundException(price_list_id)

        entries = await self.entry_repo.list_for_price_list(price_list_id)
        products = await self.catalog.get_products(e.product_id for e in entries)

        items = []
        for entry in entries:
            if not self._matches(entry, request, products.get(entry.product_id)):
                continue
            new_price = compute_new_price(entry.price, request.operation, request.value, request.rounding_strategy)
            product = products.get(entry.product_id)
            items.append(BulkUpdatePreviewItem(
                entry_id=entry.id,
                product_id=entry.product_id,
                product_name=product.name if product else None,
                product_code=product.code if product else None,
                current_price=entry.price,
                new_price=new_price,
                change_amount=new_price - entry.price,
                change_percentage=percentage_change(entry.price, new_price),
            ))
        return price_list, items

    @staticmethod
    def _matches(entry: PriceListEntry, request: BulkUpdateRequest, product) -> bool:
        if request.product_ids and entry.product_id not in request.product_ids:
            return False
        if request.category_ids and (product is None or product.category_id not in request.category_ids):
            return False
        if request.brand_ids and (product is None or product.brand_id not in request.brand_ids):
            return False
        if request.min_price is not None and entry.price < request.min_price:
            return False
        if request.max_price is not None and entry.price > request.max_price:
            return False
        return True

    @staticmethod
    def _build_preview(
        price_list: PriceList, request: BulkUpdateRequest, items: List[BulkUpdatePreviewItem]
    ) -> BulkUpdatePreview:
        total_current = sum((i.current_price for i in items), ZERO)
        total_new = sum((i.new_price for i in items), ZERO)
        average_change = ZERO
        if total_current:
            average_change = ((total_new - total_current) / total_current * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)
        return BulkUpdatePreview(
            price_list_id=price_list.id,
            price_list_name=price_list.name,
            operation=request.operation,
            value=request.value,
            rounding_strategy=request.rounding_strategy,
            affected_count=len(items),
            total_current_value=total_current,
            total_new_value=total_new,
            average_change_percentage=average_change,
            items=items,
        )

    # --- Résultats ---

    @staticmethod
    def _item_result(item: BulkUpdatePreviewItem, success: bool, error: Optional[str] = None) -> BulkUpdateItemResult:
        return BulkUpdateItemResult(
            entry_id=item.entry_id,
            product_id=item.product_id,
            old_price=item.current_price,
            new_price=item.new_price,
            success=success,
            error_message=error,
        )

    async def _rolled_back(
        self,
        price_list_id: int,
        request: BulkUpdateRequest,
        items: List[BulkUpdatePreviewItem],
        attempted: List[BulkUpdateItemResult],
        cause: str,
    ) -> BulkUpdateResult:
        await self.session.rollback()
        logger.warning(f"[BulkUpdateService] Rollback complet de la mise à jour massive sur la liste {price_list_id}")
        by_entry = {r.entry_id: r for r in attempted if not r.success}
        results = [
            by_entry.get(item.entry_id) or self._item_result(item, success=False, error="Annulé par rollback")
            for item in items
        ]
        return BulkUpdateResult(
            price_list_id=price_list_id,
            updated_count=0,
            failed_count=len(items),
            rolled_back=True,
            items=results,
            errors=[cause],
            updated_at=datetime.utcnow(),
            updated_by=request.updated_by,
        )
