import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.catalog.domain.providers import AbstractCatalogFactsProvider, AbstractDocumentHistoryProvider
from backoffice.core.cancellation import ensure_not_cancelled
from backoffice.price_lists.application.cache import PriceResolutionCache
from backoffice.price_lists.application.schemas import (
    GenerateFromProductsRequest, GenerateFromPurchasesRequest, GeneratePriceListPreview,
    GeneratedPriceItemPreview, PriceListGenerationResult, PriceListResponse, GenerationMetadataResponse,
    UpdateFromPurchasesRequest, UpdateFromPurchasesResult, PriceListGenerationBase,
)
from backoffice.price_lists.application.services import build_price_list_code, validate_window
from backoffice.price_lists.config import price_list_settings
from backoffice.price_lists.constants import (
    PriceListType, PriceListDirection, PriceListStatus, EntryStatus, GenerationSource,
    RoundingStrategy, PRICE_CHANGE_TOLERANCE, CENT, ZERO,
)
from backoffice.price_lists.domain.entities import PriceList, PriceListEntry
from backoffice.price_lists.domain.exceptions import (
    PriceListDomainException, PriceListNotFoundException, SupplierRequiredException,
    InvalidDateRangeException, BusinessPartyNotFoundException, NoDocumentsInRangeException,
    OperationCancelledException, PersistenceException,
)
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository, AbstractGenerationMetadataRepository,
)
from backoffice.price_lists.utils import apply_markup, apply_rounding, calculate_strategy_price

logger = logging.getLogger(__name__)

# (prix, quantité, date, id de ligne)
Observation = Tuple[Decimal, Decimal, datetime, int]


def finalize_price(price: Decimal, markup_percentage: Optional[Decimal], rounding: RoundingStrategy) -> Decimal:
    """Majoration puis arrondi, identiques pour toutes les sources de génération."""
    return apply_rounding(apply_markup(price, markup_percentage), rounding)


class PriceListGenerationService:
    """Génération de listes de prix depuis les prix par défaut ou l'historique des achats."""

    def __init__(
        self,
        session: AsyncSession,
        price_list_repo: AbstractPriceListRepository,
        entry_repo: AbstractPriceListEntryRepository,
        assignment_repo: AbstractBusinessPartyAssignmentRepository,
        metadata_repo: AbstractGenerationMetadataRepository,
        catalog: AbstractCatalogFactsProvider,
        documents: AbstractDocumentHistoryProvider,
        cache: PriceResolutionCache,
    ):
        self.session = session
        self.price_list_repo = price_list_repo
        self.entry_repo = entry_repo
        self.assignment_repo = assignment_repo
        self.metadata_repo = metadata_repo
        self.catalog = catalog
        self.documents = documents
        self.cache = cache

    # --- Depuis les prix par défaut ---

    async def generate_from_products(
        self, request: GenerateFromProductsRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> PriceListGenerationResult:
        logger.info(f"[PriceListGenerationService] Génération '{request.name}' depuis les prix produits")
        validate_window(request.valid_from, request.valid_to)
        for party_id in request.business_party_ids or []:
            if await self.catalog.get_business_party(party_id) is None:
                raise BusinessPartyNotFoundException(party_id)

        products = await self.catalog.list_products(
            only_active=request.only_active_products,
            category_ids=request.category_ids,
            minimum_price=request.minimum_price,
        )
        currency = request.currency or price_list_settings.DEFAULT_CURRENCY
        rows = []
        skipped = 0
        for product in products:
            base_price = product.default_price
            if base_price is None or base_price <= 0:
                if request.only_products_with_price:
                    skipped += 1
                    continue
                base_price = base_price or ZERO
            rows.append({
                "product_id": product.id,
                "price": finalize_price(base_price, request.markup_percentage, request.rounding_strategy),
                "currency": currency,
                "unit_of_measure_id": product.unit_of_measure_id,
            })

        async def persist(price_list: PriceList) -> int:
            assigned = 0
            for party_id in request.business_party_ids or []:
                await self.assignment_repo.add({"price_list_id": price_list.id, "business_party_id": party_id})
                assigned += 1
            return assigned

        return await self._persist_generated(
            request,
            header={"type": request.type, "direction": request.direction, "is_generated_from_documents": False},
            rows=rows,
            metadata={
                "generation_source": GenerationSource.PRODUCTS,
                "documents_analyzed": 0,
            },
            skipped=skipped,
            extra=persist,
            cancel_event=cancel_event,
        )

    # --- Depuis l'historique des achats ---

    async def preview_from_purchases(
        self, request: GenerateFromPurchasesRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> GeneratePriceListPreview:
        supplier = await self._validate_purchase_request(request)
        observations, documents = await self._aggregate(request.supplier_id, request.from_date, request.to_date, cancel_event)
        products = await self.catalog.get_products(observations.keys())

        items = []
        warnings = []
        if not documents:
            warnings.append("NoDocumentsInRange: aucun document d'achat dans la période.")
        for product_id in sorted(observations):
            product = products.get(product_id)
            if product is None:
                warnings.append(f"Produit {product_id} absent du catalogue: ignoré.")
                continue
            if request.only_active_products and not product.is_active:
                continue
            if request.category_ids and product.category_id not in request.category_ids:
                continue
            product_observations = observations[product_id]
            total_quantity = sum((o[1] for o in product_observations), ZERO)
            if request.minimum_quantity is not None and total_quantity < request.minimum_quantity:
                continue

            prices = [o[0] for o in product_observations]
            original_price = calculate_strategy_price(product_observations, request.calculation_strategy)
            items.append(GeneratedPriceItemPreview(
                product_id=product_id,
                product_code=product.code,
                product_name=product.name,
                calculated_price=finalize_price(original_price, request.markup_percentage, request.rounding_strategy),
                original_price=original_price,
                occurrences=len(product_observations),
                total_quantity=total_quantity,
                lowest_price=min(prices),
                highest_price=max(prices),
                average_price=(sum(prices, ZERO) / len(prices)).quantize(CENT, rounding=ROUND_HALF_UP),
                last_purchase_date=max(o[2] for o in product_observations),
            ))

        logger.info(
            f"[PriceListGenerationService] Aperçu fournisseur {supplier.id}: {len(documents)} document(s), "
            f"{len(items)} produit(s)"
        )
        return GeneratePriceListPreview(
            supplier_id=supplier.id,
            supplier_name=supplier.name,
            calculation_strategy=request.calculation_strategy,
            rounding_strategy=request.rounding_strategy,
            markup_percentage=request.markup_percentage,
            analysis_from=request.from_date,
            analysis_to=request.to_date,
            documents_analyzed=len(documents),
            products_found=len(items),
            products_with_multiple_prices=sum(1 for i in items if i.lowest_price != i.highest_price),
            total_estimated_value=sum((i.calculated_price for i in items), ZERO),
            items=items,
            warnings=warnings,
            generated_at=datetime.utcnow(),
        )

    async def generate_from_purchases(
        self, request: GenerateFromPurchasesRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> PriceListGenerationResult:
        preview = await self.preview_from_purchases(request, cancel_event)
        if preview.documents_analyzed == 0:
            raise NoDocumentsInRangeException(preview.supplier_id)

        currency = request.currency or price_list_settings.DEFAULT_CURRENCY
        rows = [
            {"product_id": item.product_id, "price": item.calculated_price, "currency": currency}
            for item in preview.items
        ]

        async def persist(price_list: PriceList) -> int:
            await self.assignment_repo.add({
                "price_list_id": price_list.id,
                "business_party_id": preview.supplier_id,
                "is_primary": True,
                "created_by": request.created_by,
            })
            return 1

        return await self._persist_generated(
            request,
            header={
                "type": PriceListType.PURCHASE,
                "direction": PriceListDirection.INPUT,
                "is_generated_from_documents": True,
            },
            rows=rows,
            metadata={
                "generation_source": GenerationSource.PURCHASE_DOCUMENTS,
                "calculation_strategy": request.calculation_strategy,
                "supplier_id": preview.supplier_id,
                "analysis_from": request.from_date,
                "analysis_to": request.to_date,
                "documents_analyzed": preview.documents_analyzed,
            },
            extra=persist,
            cancel_event=cancel_event,
        )

    async def update_from_purchases(
        self, price_list_id: int, request: UpdateFromPurchasesRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> UpdateFromPurchasesResult:
        price_list = await self.price_list_repo.get_by_id(price_list_id)
        if price_list is None:
            raise PriceListNotFoundException(price_list_id)

        supplier_id = request.supplier_id
        if supplier_id is None:
            assignments = await self.assignment_repo.list_for_price_list(price_list_id)
            primary = sorted(assignments, key=lambda a: (not a.is_primary, a.id))
            supplier_id = primary[0].business_party_id if primary else None
        if supplier_id is None:
            raise SupplierRequiredException()

        to_date = request.to_date or datetime.utcnow()
        from_date = request.from_date or to_date - timedelta(days=price_list_settings.UPDATE_FROM_PURCHASES_DEFAULT_DAYS)
        if from_date >= to_date:
            raise InvalidDateRangeException("La date de début doit précéder la date de fin.")

        observations, _ = await self._aggregate(supplier_id, from_date, to_date, cancel_event)
        entries = await self.entry_repo.list_for_price_list(price_list_id, only_active=True)
        current: Dict[int, PriceListEntry] = {}
        for entry in sorted(entries, key=lambda e: (e.min_quantity, -e.score, e.id)):
            current.setdefault(entry.product_id, entry)
        # Les prix ajoutés reprennent la devise de la liste pour rester éligibles à la résolution
        list_currency = min(entries, key=lambda e: e.id).currency if entries else price_list_settings.DEFAULT_CURRENCY

        updated = added = removed = unchanged = 0
        warnings: List[str] = []
        try:
            for product_id in sorted(observations):
                ensure_not_cancelled(cancel_event, "mise à jour depuis les achats")
                base = calculate_strategy_price(observations[product_id], request.calculation_strategy)
                new_price = finalize_price(base, request.markup_percentage, request.rounding_strategy)
                entry = current.get(product_id)
                if entry is not None:
                    if abs(entry.price - new_price) > PRICE_CHANGE_TOLERANCE:
                        await self.entry_repo.update_price(entry.id, new_price)
                        updated += 1
                    else:
                        unchanged += 1
                elif request.add_new_products:
                    await self.entry_repo.add({
                        "price_list_id": price_list_id,
                        "product_id": product_id,
                        "price": new_price,
                        "currency": list_currency,
                    })
                    added += 1
                else:
                    warnings.append(f"Produit {product_id} acheté mais absent de la liste: non ajouté.")

            if request.remove_obsolete_products:
                for product_id, entry in current.items():
                    if product_id not in observations:
                        await self.entry_repo.update(entry.id, {"status": EntryStatus.INACTIVE})
                        removed += 1
            await self.price_list_repo.update(price_list_id, {"modified_by": request.updated_by})
            await self.session.commit()
        except (OperationCancelledException, asyncio.CancelledError):
            await self.session.rollback()
            raise
        except (SQLAlchemyError, PriceListDomainException) as e:
            await self.session.rollback()
            logger.error(f"[PriceListGenerationService] Échec MAJ liste {price_list_id} depuis les achats: {e}", exc_info=True)
            raise PersistenceException(f"Échec de la mise à jour depuis les achats: {e}") from e

        self.cache.clear()
        logger.info(
            f"[PriceListGenerationService] Liste {price_list_id}: {updated} MAJ, {added} ajout(s), "
            f"{removed} retrait(s), {unchanged} inchangé(s)"
        )
        return UpdateFromPurchasesResult(
            price_list_id=price_list_id,
            supplier_id=supplier_id,
            analysis_from=from_date,
            analysis_to=to_date,
            updated_count=updated,
            added_count=added,
            removed_count=removed,
            unchanged_count=unchanged,
            warnings=warnings,
            updated_at=datetime.utcnow(),
        )

    # --- Interne ---

    async def _validate_purchase_request(self, request: GenerateFromPurchasesRequest):
        if request.supplier_id is None:
            raise SupplierRequiredException()
        if request.from_date >= request.to_date:
            raise InvalidDateRangeException("La date de début doit précéder la date de fin.")
        if request.to_date > datetime.utcnow():
            raise InvalidDateRangeException("La date de fin ne peut pas être dans le futur.")
        validate_window(request.valid_from, request.valid_to)
        supplier = await self.catalog.get_business_party(request.supplier_id)
        if supplier is None:
            raise BusinessPartyNotFoundException(request.supplier_id)
        return supplier

    async def _aggregate(
        self, supplier_id: int, from_date: datetime, to_date: datetime, cancel_event: Optional[asyncio.Event]
    ) -> Tuple[Dict[int, List[Observation]], Set[int]]:
        observations: Dict[int, List[Observation]] = {}
        documents: Set[int] = set()
        count = 0
        async for line in self.documents.query_purchase_lines(supplier_id, from_date, to_date):
            observations.setdefault(line.product_id, []).append((line.price, line.quantity, line.date, line.line_id))
            documents.add(line.document_id)
            count += 1
            if count % price_list_settings.PURCHASE_LINES_PAGE_SIZE == 0:
                ensure_not_cancelled(cancel_event, "analyse des achats")
        logger.debug(f"[PriceListGenerationService] Fournisseur {supplier_id}: {count} ligne(s), {len(documents)} document(s)")
        return observations, documents

    async def _persist_generated(
        self,
        request: PriceListGenerationBase,
        header: dict,
        rows: List[dict],
        metadata: dict,
        extra,
        cancel_event: Optional[asyncio.Event],
        skipped: int = 0,
    ) -> PriceListGenerationResult:
        """Crée l'en-tête, les prix, les assignations et les métadonnées dans une seule transaction."""
        try:
            ensure_not_cancelled(cancel_event, "génération de liste")
            code = await build_price_list_code(self.price_list_repo, request.name, request.code)
            price_list = await self.price_list_repo.add({
                "name": request.name,
                "code": code,
                "description": request.description,
                "priority": request.priority,
                "is_default": request.is_default,
                "valid_from": request.valid_from,
                "valid_to": request.valid_to,
                "event_id": request.event_id,
                "status": PriceListStatus.ACTIVE,
                "created_by": request.created_by,
                **header,
            })
            for row in rows:
                row["price_list_id"] = price_list.id
            generated = await self.entry_repo.add_many(rows)
            assigned = await extra(price_list)
            ensure_not_cancelled(cancel_event, "génération de liste")
            metadata_entity = await self.metadata_repo.add({
                "price_list_id": price_list.id,
                "rounding_strategy": request.rounding_strategy,
                "markup_percentage": request.markup_percentage,
                "products_generated": generated,
                "generated_by": request.created_by,
                **metadata,
            })
            await self.session.commit()
        except (OperationCancelledException, asyncio.CancelledError):
            await self.session.rollback()
            logger.warning(f"[PriceListGenerationService] Génération '{request.name}' annulée, rollback.")
            raise
        except PriceListDomainException:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"[PriceListGenerationService] Échec génération '{request.name}': {e}", exc_info=True)
            raise PersistenceException(f"Échec de la génération de la liste: {e}") from e

        self.cache.clear()
        logger.info(f"[PriceListGenerationService] Liste {price_list.id} ({code}) générée: {generated} prix")
        return PriceListGenerationResult(
            price_list=PriceListResponse.model_validate(price_list),
            products_generated=generated,
            products_skipped=skipped,
            business_parties_assigned=assigned,
            metadata=GenerationMetadataResponse.model_validate(metadata_entity),
        )
