"""
Résolution du prix applicable à un produit.

Ordre de recherche (le premier résultat l'emporte):
  1. Manuel: prix fourni par l'appelant
  2. Liste forcée: prix de la liste imposée, échec explicite si absent
  3. Listes assignées au tiers (priorité d'assignation ou de liste)
  4. Listes générales (non assignées à un tiers)
  5. Prix par défaut du produit

Tri des candidats: priorité croissante (0 = la plus haute), puis score du prix
décroissant, puis date de création de la liste croissante.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple

from backoffice.catalog.domain.entities import ProductFacts
from backoffice.catalog.domain.providers import AbstractCatalogFactsProvider
from backoffice.core.cancellation import ensure_not_cancelled
from backoffice.price_lists.application.cache import PriceResolutionCache
from backoffice.price_lists.application.schemas import (
    PriceResolutionRequest, PriceResolutionResult, AvailablePriceList
)
from backoffice.price_lists.config import price_list_settings
from backoffice.price_lists.constants import (
    PriceApplicationMode, PriceListStatus, PriceSource, CENT, ZERO
)
from backoffice.price_lists.domain.entities import PriceList, PriceListEntry, BusinessPartyAssignment
from backoffice.price_lists.domain.exceptions import (
    InvalidPriceRequestException, PriceListNotFoundException, PriceListNotActiveException,
    PriceListEntryNotFoundException, ProductNotFoundException,
)
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository,
)
from backoffice.price_lists.utils import apply_discount

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    price_list: PriceList
    effective_priority: int
    assignment: Optional[BusinessPartyAssignment] = None
    entry: Optional[PriceListEntry] = None

    def sort_key(self) -> Tuple:
        score = self.entry.score if self.entry else 0
        return (self.effective_priority, -score, self.price_list.created_at, self.price_list.id)

    def describe(self) -> str:
        return f"'{self.price_list.name}' (ID {self.price_list.id}, priorité {self.effective_priority})"


@dataclass
class _ResolutionContext:
    request: PriceResolutionRequest
    product: ProductFacts
    moment: datetime
    currency: str
    search_path: List[str]
    available: Dict[int, AvailablePriceList]


class PriceResolutionService:
    """Service de résolution de prix (lecture seule)."""

    def __init__(
        self,
        price_list_repo: AbstractPriceListRepository,
        entry_repo: AbstractPriceListEntryRepository,
        assignment_repo: AbstractBusinessPartyAssignmentRepository,
        catalog: AbstractCatalogFactsProvider,
        cache: PriceResolutionCache,
    ):
        self.price_list_repo = price_list_repo
        self.entry_repo = entry_repo
        self.assignment_repo = assignment_repo
        self.catalog = catalog
        self.cache = cache

    async def resolve_price(
        self, request: PriceResolutionRequest, cancel_event: Optional[asyncio.Event] = None
    ) -> PriceResolutionResult:
        ensure_not_cancelled(cancel_event, "résolution de prix")
        mode = self._effective_mode(request)
        logger.debug(f"[PriceResolutionService] Produit {request.product_id}, tiers {request.business_party_id}, mode {mode.value}")

        if mode == PriceApplicationMode.MANUAL:
            return self._resolve_manual(request)

        cached = self.cache.get(request)
        if cached is not None:
            return cached

        product = await self.catalog.get_product(request.product_id)
        if product is None:
            raise ProductNotFoundException(request.product_id)

        ctx = _ResolutionContext(
            request=request,
            product=product,
            moment=request.reference_date or datetime.utcnow(),
            currency=request.currency or price_list_settings.DEFAULT_CURRENCY,
            search_path=[],
            available={},
        )

        if mode == PriceApplicationMode.FORCED_PRICE_LIST:
            result = await self._resolve_forced(ctx)
        else:
            result = await self._resolve_automatic(ctx, cancel_event)

        self.cache.set(request, result)
        return result

    @staticmethod
    def _effective_mode(request: PriceResolutionRequest) -> PriceApplicationMode:
        if request.application_mode != PriceApplicationMode.HYBRID:
            return request.application_mode
        if request.manual_price is not None:
            return PriceApplicationMode.MANUAL
        if request.forced_price_list_id is not None:
            return PriceApplicationMode.FORCED_PRICE_LIST
        return PriceApplicationMode.AUTOMATIC

    # --- Modes ---

    def _resolve_manual(self, request: PriceResolutionRequest) -> PriceResolutionResult:
        if request.manual_price is None:
            raise InvalidPriceRequestException("Le prix manuel est obligatoire en mode Manuel.")
        if request.manual_price < 0:
            raise InvalidPriceRequestException("Le prix manuel ne peut pas être négatif.")
        return PriceResolutionResult(
            product_id=request.product_id,
            price=request.manual_price,
            original_price=request.manual_price,
            source=PriceSource.MANUAL,
            is_price_from_list=False,
            currency=request.currency or price_list_settings.DEFAULT_CURRENCY,
            unit_of_measure_id=request.unit_of_measure_id,
            search_path=["Mode manuel: prix fourni par l'appelant"],
            resolved_at=datetime.utcnow(),
        )

    async def _resolve_forced(self, ctx: _ResolutionContext) -> PriceResolutionResult:
        request = ctx.request
        if request.forced_price_list_id is None:
            raise InvalidPriceRequestException("Une liste de prix forcée est obligatoire en mode ForcedPriceList.")

        price_list = await self.price_list_repo.get_by_id(request.forced_price_list_id)
        if price_list is None:
            raise PriceListNotFoundException(request.forced_price_list_id)
        if price_list.status != PriceListStatus.ACTIVE:
            raise PriceListNotActiveException(price_list.id, f"statut {price_list.status.value}")
        if not price_list.is_valid_at(ctx.moment):
            raise PriceListNotActiveException(price_list.id, f"hors période de validité au {ctx.moment:%Y-%m-%d}")

        entries = await self.entry_repo.list_for_product(ctx.product.id, price_list_ids=[price_list.id])
        candidate = _Candidate(price_list=price_list, effective_priority=price_list.priority)
        candidate.entry = self._pick_entry(entries, ctx, candidate)
        self._register_available(ctx, candidate, is_party_specific=False)
        if candidate.entry is None:
            logger.warning(f"[PriceResolutionService] Liste forcée {price_list.id} sans prix pour le produit {ctx.product.id}")
            raise PriceListEntryNotFoundException(price_list.id, ctx.product.id)

        if request.business_party_id is not None:
            assignment = await self.assignment_repo.get(price_list.id, request.business_party_id)
            if assignment is not None and assignment.is_valid_at(ctx.moment):
                candidate.assignment = assignment

        ctx.search_path.append(f"Liste forcée {candidate.describe()}: prix {candidate.entry.price} retenu")
        return await self._build_from_entry(ctx, candidate, PriceSource.FORCED_LIST)

    async def _resolve_automatic(
        self, ctx: _ResolutionContext, cancel_event: Optional[asyncio.Event]
    ) -> PriceResolutionResult:
        request = ctx.request

        if request.business_party_id is not None:
            party_candidates = await self._party_candidates(ctx)
            winner = await self._select_winner(ctx, party_candidates, is_party_specific=True)
            if winner is not None:
                return await self._build_from_entry(ctx, winner, PriceSource.PARTY_LIST)
            ctx.search_path.append(f"Aucune liste du tiers {request.business_party_id} ne couvre le produit")
        else:
            ctx.search_path.append("Aucun tiers fourni: recherche limitée aux listes générales")

        ensure_not_cancelled(cancel_event, "résolution de prix")
        general_candidates = await self._general_candidates(ctx)
        winner = await self._select_winner(ctx, general_candidates, is_party_specific=False)
        if winner is not None:
            return await self._build_from_entry(ctx, winner, PriceSource.GENERAL_LIST)

        ctx.search_path.append("Aucune liste générale applicable: prix par défaut du produit")
        return await self._build_from_default(ctx)

    # --- Candidats ---

    def _rejection_reason(self, price_list: PriceList, ctx: _ResolutionContext) -> Optional[str]:
        if price_list.status != PriceListStatus.ACTIVE:
            return f"statut {price_list.status.value}"
        if price_list.direction != ctx.request.direction:
            return f"direction {price_list.direction.value}"
        if price_list.event_id is not None and price_list.event_id != ctx.request.event_id:
            return f"rattachée à l'événement {price_list.event_id}"
        if not price_list.is_valid_at(ctx.moment):
            return "hors période de validité"
        return None

    async def _party_candidates(self, ctx: _ResolutionContext) -> List[_Candidate]:
        assignments = await self.assignment_repo.list_for_party(ctx.request.business_party_id)
        price_lists = await self.price_list_repo.get_many(a.price_list_id for a in assignments)
        candidates = []
        for assignment in assignments:
            price_list = price_lists.get(assignment.price_list_id)
            if price_list is None:
                continue
            candidate = _Candidate(
                price_list=price_list,
                effective_priority=assignment.effective_priority(price_list),
                assignment=assignment,
            )
            reason = self._rejection_reason(price_list, ctx)
            if reason is None and not assignment.is_valid_at(ctx.moment):
                reason = "assignation du tiers hors période de validité"
            if reason is not None:
                ctx.search_path.append(f"Liste du tiers {candidate.describe()}: rejetée ({reason})")
                continue
            candidates.append(candidate)
        return candidates

    async def _general_candidates(self, ctx: _ResolutionContext) -> List[_Candidate]:
        active_lists = await self.price_list_repo.list_by_status([PriceListStatus.ACTIVE], ctx.request.direction)
        party_scoped_ids = await self.assignment_repo.price_list_ids_with_active_assignments()
        candidates = []
        for price_list in active_lists:
            if price_list.id in party_scoped_ids:
                continue
            candidate = _Candidate(price_list=price_list, effective_priority=price_list.priority)
            reason = self._rejection_reason(price_list, ctx)
            if reason is not None:
                ctx.search_path.append(f"Liste générale {candidate.describe()}: rejetée ({reason})")
                continue
            candidates.append(candidate)
        return candidates

    async def _select_winner(
        self, ctx: _ResolutionContext, candidates: List[_Candidate], is_party_specific: bool
    ) -> Optional[_Candidate]:
        if not candidates:
            return None
        entries = await self.entry_repo.list_for_product(
            ctx.product.id, price_list_ids=[c.price_list.id for c in candidates]
        )
        entries_by_list: Dict[int, List[PriceListEntry]] = {}
        for entry in entries:
            entries_by_list.setdefault(entry.price_list_id, []).append(entry)

        matching = []
        for candidate in candidates:
            candidate.entry = self._pick_entry(entries_by_list.get(candidate.price_list.id, []), ctx, candidate)
            self._register_available(ctx, candidate, is_party_specific)
            if candidate.entry is not None:
                matching.append(candidate)
        if not matching:
            return None

        matching.sort(key=_Candidate.sort_key)
        winner = matching[0]
        kind = "du tiers" if is_party_specific else "générale"
        for other in matching[1:]:
            ctx.search_path.append(f"Liste {kind} {other.describe()}: écartée (précédence inférieure à {winner.describe()})")
        ctx.search_path.append(f"Liste {kind} {winner.describe()}: retenue, prix {winner.entry.price}")
        return winner

    def _pick_entry(
        self, entries: List[PriceListEntry], ctx: _ResolutionContext, candidate: _Candidate
    ) -> Optional[PriceListEntry]:
        if not entries:
            ctx.search_path.append(f"Liste {candidate.describe()}: aucun prix pour le produit")
            return None
        in_tier = [e for e in entries if e.is_active and e.matches_quantity(ctx.request.quantity)]
        if not in_tier:
            ctx.search_path.append(f"Liste {candidate.describe()}: aucun palier pour la quantité {ctx.request.quantity}")
            return None
        same_currency = [e for e in in_tier if e.currency == ctx.currency]
        if not same_currency:
            ctx.search_path.append(f"Liste {candidate.describe()}: devise différente de {ctx.currency}")
            return None
        # Score décroissant, palier le plus spécifique, puis ancienneté
        return sorted(same_currency, key=lambda e: (-e.score, -e.min_quantity, e.id))[0]

    def _register_available(self, ctx: _ResolutionContext, candidate: _Candidate, is_party_specific: bool) -> None:
        ctx.available[candidate.price_list.id] = AvailablePriceList(
            price_list_id=candidate.price_list.id,
            name=candidate.price_list.name,
            priority=candidate.effective_priority,
            is_party_specific=is_party_specific,
            has_matching_entry=candidate.entry is not None,
        )

    # --- Construction du résultat ---

    async def _build_from_entry(
        self, ctx: _ResolutionContext, candidate: _Candidate, source: PriceSource
    ) -> PriceResolutionResult:
        entry = candidate.entry
        price = entry.price
        discount = None
        assignment = candidate.assignment
        if assignment is not None and assignment.global_discount_percentage:
            if entry.is_discountable:
                discount = assignment.global_discount_percentage
                price = apply_discount(price, discount)
                ctx.search_path.append(f"Remise tiers de {discount}% appliquée")
            else:
                ctx.search_path.append("Remise tiers ignorée: prix non remisable")

        entry_unit = entry.unit_of_measure_id or ctx.product.unit_of_measure_id
        price, unit_id, factor = await self._convert_unit(ctx, price, entry_unit)
        return await self._result(
            ctx,
            price=price,
            original_price=entry.price,
            source=source,
            is_price_from_list=True,
            price_list=candidate.price_list,
            entry=entry,
            discount=discount,
            unit_id=unit_id,
            original_unit_id=entry_unit,
            factor=factor,
        )

    async def _build_from_default(self, ctx: _ResolutionContext) -> PriceResolutionResult:
        default_price = ctx.product.default_price if ctx.product.default_price is not None else ZERO
        base_unit = ctx.product.unit_of_measure_id
        price, unit_id, factor = await self._convert_unit(ctx, default_price, base_unit)
        return await self._result(
            ctx,
            price=price,
            original_price=default_price,
            source=PriceSource.DEFAULT_PRICE,
            is_price_from_list=False,
            unit_id=unit_id,
            original_unit_id=base_unit,
            factor=factor,
        )

    async def _convert_unit(
        self, ctx: _ResolutionContext, price: Decimal, from_unit: Optional[int]
    ) -> Tuple[Decimal, Optional[int], Optional[Decimal]]:
        to_unit = ctx.request.unit_of_measure_id
        if to_unit is None or from_unit is None or to_unit == from_unit:
            return price, from_unit if to_unit is None else to_unit, None
        factor = await self.catalog.get_unit_conversion(ctx.product.id, from_unit, to_unit)
        if factor is None:
            ctx.search_path.append(f"Conversion {from_unit} -> {to_unit} introuvable: prix laissé dans l'unité {from_unit}")
            return price, from_unit, None
        converted = (price * factor).quantize(CENT, rounding=ROUND_HALF_UP)
        ctx.search_path.append(f"Conversion d'unité {from_unit} -> {to_unit} (facteur {factor}): {price} -> {converted}")
        return converted, to_unit, factor

    async def _result(
        self,
        ctx: _ResolutionContext,
        price: Decimal,
        original_price: Decimal,
        source: PriceSource,
        is_price_from_list: bool,
        unit_id: Optional[int],
        original_unit_id: Optional[int],
        factor: Optional[Decimal],
        price_list: Optional[PriceList] = None,
        entry: Optional[PriceListEntry] = None,
        discount: Optional[Decimal] = None,
    ) -> PriceResolutionResult:
        vat_percentage = None
        if ctx.product.vat_rate_id is not None:
            vat_rate = await self.catalog.get_vat_rate(ctx.product.vat_rate_id)
            vat_percentage = vat_rate.percentage if vat_rate else None

        available = sorted(ctx.available.values(), key=lambda a: (a.priority, a.price_list_id))
        logger.debug(f"[PriceResolutionService] Produit {ctx.product.id}: {price} ({source.value})")
        return PriceResolutionResult(
            product_id=ctx.product.id,
            price=price,
            original_price=original_price,
            source=source,
            is_price_from_list=is_price_from_list,
            applied_price_list_id=price_list.id if price_list else None,
            applied_price_list_name=price_list.name if price_list else None,
            applied_entry_id=entry.id if entry else None,
            applied_discount_percentage=discount,
            currency=entry.currency if entry else ctx.currency,
            unit_of_measure_id=unit_id,
            original_unit_of_measure_id=original_unit_id,
            is_unit_converted=factor is not None,
            conversion_factor=factor,
            vat_rate_id=ctx.product.vat_rate_id,
            vat_percentage=vat_percentage,
            search_path=ctx.search_path,
            available_price_lists=available,
            resolved_at=datetime.utcnow(),
        )
