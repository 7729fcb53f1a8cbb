import asyncio
import logging
import time
from collections import defaultdict
from itertools import combinations
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from backoffice.core.cancellation import ensure_not_cancelled
from backoffice.price_lists.application.schemas import (
    PrecedenceIssue, PrecedenceWarning, PrecedenceValidationResult
)
from backoffice.price_lists.config import price_list_settings
from backoffice.price_lists.constants import (
    PriceListStatus, ValidationSeverity, ValidationIssueType, ValidationWarningType
)
from backoffice.price_lists.domain.entities import PriceList, PriceListEntry
from backoffice.price_lists.domain.repositories import (
    AbstractPriceListRepository, AbstractPriceListEntryRepository,
    AbstractBusinessPartyAssignmentRepository,
)
from backoffice.price_lists.utils import windows_overlap, tiers_overlap

logger = logging.getLogger(__name__)

BLOCKING_SEVERITIES = (ValidationSeverity.CRITICAL, ValidationSeverity.HIGH)


class PrecedenceValidationService:
    """
    Audit de la précédence des listes de prix d'un périmètre (événement ou listes globales).

    Purement consultatif: les problèmes sont rapportés, jamais corrigés, et aucune
    exception n'est levée pour un problème de qualité des données.
    """

    def __init__(
        self,
        price_list_repo: AbstractPriceListRepository,
        entry_repo: AbstractPriceListEntryRepository,
        assignment_repo: AbstractBusinessPartyAssignmentRepository,
    ):
        self.price_list_repo = price_list_repo
        self.entry_repo = entry_repo
        self.assignment_repo = assignment_repo

    async def validate_precedence(
        self, scope_id: Optional[int] = None, cancel_event: Optional[asyncio.Event] = None
    ) -> PrecedenceValidationResult:
        started = time.perf_counter()
        now = datetime.utcnow()
        logger.info(f"[PrecedenceValidationService] Validation du périmètre {scope_id or 'global'}")

        price_lists = await self.price_list_repo.list_for_event(scope_id)
        active = [pl for pl in price_lists if pl.status == PriceListStatus.ACTIVE]
        defaults = [pl for pl in active if pl.is_default]
        expired = [pl for pl in price_lists if pl.is_expired_at(now)]

        issues: List[PrecedenceIssue] = []
        warnings: List[PrecedenceWarning] = []
        party_groups: Dict[int, List[Tuple[int, PriceList]]] = {}

        issues.extend(self._check_expired_only(price_lists, now))
        if not active:
            issues.insert(0, PrecedenceIssue(
                issue_type=ValidationIssueType.NO_PRICE_LISTS_FOUND,
                severity=ValidationSeverity.CRITICAL,
                message="Aucune liste de prix active: tous les prix proviendront du prix par défaut des produits.",
                suggested_resolution="Créer ou activer au moins une liste de prix.",
            ))
        else:
            ensure_not_cancelled(cancel_event, "validation de la précédence")
            issues.extend(self._check_defaults(active, defaults))
            party_groups = await self._party_groups(active)
            issues.extend(self._check_priorities(active, party_groups))
            issues.extend(self._check_overlaps(active, party_groups))
            ensure_not_cancelled(cancel_event, "validation de la précédence")
            warnings.extend(self._check_expiry_warnings(active, now))
            entries = await self.entry_repo.list_active_for_price_lists(pl.id for pl in active)
            warnings.extend(self._check_entries(active, entries))

        recommended = self._recommend_default(active, defaults, party_groups, now)
        result = PrecedenceValidationResult(
            scope_id=scope_id,
            is_valid=not any(i.severity in BLOCKING_SEVERITIES for i in issues),
            total_price_lists=len(price_lists),
            active_price_lists=len(active),
            default_price_lists=len(defaults),
            expired_price_lists=len(expired),
            issues=issues,
            warnings=warnings,
            recommended_default_price_list_id=recommended.id if recommended else None,
            recommended_default_price_list_name=recommended.name if recommended else None,
            validated_at=now,
            validation_duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        logger.info(
            f"[PrecedenceValidationService] Périmètre {scope_id or 'global'}: valide={result.is_valid}, "
            f"{len(issues)} problème(s), {len(warnings)} avertissement(s)"
        )
        return result

    # --- Contrôles ---

    @staticmethod
    def _check_defaults(active: List[PriceList], defaults: List[PriceList]) -> List[PrecedenceIssue]:
        # Des listes par défaut aux périodes disjointes (saisons successives) ne sont pas en conflit
        conflicting: Dict[int, PriceList] = {}
        for a, b in combinations(defaults, 2):
            if windows_overlap(a.valid_from, a.valid_to, b.valid_from, b.valid_to):
                conflicting[a.id] = a
                conflicting[b.id] = b
        if conflicting:
            clashing = sorted(conflicting.values(), key=lambda pl: pl.id)
            return [PrecedenceIssue(
                issue_type=ValidationIssueType.MULTIPLE_DEFAULT_PRICE_LISTS,
                severity=ValidationSeverity.HIGH,
                message=(
                    f"{len(clashing)} listes actives marquées par défaut ont des périodes de validité "
                    f"qui se chevauchent: le défaut effectif est ambigu."
                ),
                affected_price_list_ids=[pl.id for pl in clashing],
                affected_price_list_names=[pl.name for pl in clashing],
                suggested_resolution="Ne conserver qu'une seule liste par défaut sur une même période.",
            )]
        if not defaults:
            return [PrecedenceIssue(
                issue_type=ValidationIssueType.NO_DEFAULT_PRICE_LIST,
                severity=ValidationSeverity.MEDIUM,
                message="Aucune liste par défaut: sans liste applicable, le prix par défaut du produit sera utilisé.",
                affected_price_list_ids=[pl.id for pl in active],
                suggested_resolution="Marquer la liste recommandée comme liste par défaut.",
            )]
        return []

    @staticmethod
    def _check_expired_only(price_lists: List[PriceList], now: datetime) -> List[PrecedenceIssue]:
        if price_lists and all(pl.is_expired_at(now) for pl in price_lists):
            return [PrecedenceIssue(
                issue_type=ValidationIssueType.EXPIRED_PRICE_LISTS_ONLY,
                severity=ValidationSeverity.CRITICAL,
                message="Toutes les listes de prix sont expirées: aucune ne sera retenue à la date du jour.",
                affected_price_list_ids=[pl.id for pl in price_lists],
                affected_price_list_names=[pl.name for pl in price_lists],
                suggested_resolution="Prolonger la validité d'une liste ou en créer une nouvelle.",
            )]
        return []

    async def _party_groups(self, active: List[PriceList]) -> Dict[int, List[Tuple[int, PriceList]]]:
        """Listes actives par tiers, avec leur priorité effective pour ce tiers."""
        by_id = {pl.id: pl for pl in active}
        groups: Dict[int, List[Tuple[int, PriceList]]] = defaultdict(list)
        for assignment in await self.assignment_repo.list_active():
            price_list = by_id.get(assignment.price_list_id)
            if price_list is not None:
                groups[assignment.business_party_id].append((assignment.effective_priority(price_list), price_list))
        return groups

    @staticmethod
    def _general_lists(active: List[PriceList], party_groups: Dict[int, List[Tuple[int, PriceList]]]) -> List[PriceList]:
        party_scoped = {pl.id for group in party_groups.values() for _, pl in group}
        return [pl for pl in active if pl.id not in party_scoped]

    def _priority_groups(
        self, active: List[PriceList], party_groups: Dict[int, List[Tuple[int, PriceList]]]
    ) -> List[Tuple[Optional[int], int, List[PriceList]]]:
        """(tiers ou None, priorité, listes) pour chaque priorité partagée par plusieurs listes."""
        groups = []
        by_priority: Dict[int, List[PriceList]] = defaultdict(list)
        for pl in self._general_lists(active, party_groups):
            by_priority[pl.priority].append(pl)
        groups.extend((None, prio, lists) for prio, lists in sorted(by_priority.items()) if len(lists) > 1)

        for party_id, pairs in sorted(party_groups.items()):
            party_by_priority: Dict[int, List[PriceList]] = defaultdict(list)
            for prio, pl in pairs:
                party_by_priority[prio].append(pl)
            groups.extend((party_id, prio, lists) for prio, lists in sorted(party_by_priority.items()) if len(lists) > 1)
        return groups

    def _check_priorities(
        self, active: List[PriceList], party_groups: Dict[int, List[Tuple[int, PriceList]]]
    ) -> List[PrecedenceIssue]:
        issues = []
        for party_id, priority, lists in self._priority_groups(active, party_groups):
            scope = f"du tiers {party_id}" if party_id is not None else "générales"
            issues.append(PrecedenceIssue(
                issue_type=ValidationIssueType.DUPLICATE_PRIORITIES,
                severity=ValidationSeverity.MEDIUM,
                message=(
                    f"{len(lists)} listes {scope} partagent la priorité {priority}: "
                    f"le gagnant dépend du score des prix puis de la date de création."
                ),
                affected_price_list_ids=[pl.id for pl in lists],
                affected_price_list_names=[pl.name for pl in lists],
                business_party_id=party_id,
                suggested_resolution="Attribuer des priorités distinctes.",
            ))
        return issues

    def _check_overlaps(
        self, active: List[PriceList], party_groups: Dict[int, List[Tuple[int, PriceList]]]
    ) -> List[PrecedenceIssue]:
        issues = []
        for party_id, priority, lists in self._priority_groups(active, party_groups):
            ordered = sorted(lists, key=lambda pl: (pl.valid_from or datetime.min, pl.id))
            for current, following in combinations(ordered, 2):
                if not windows_overlap(current.valid_from, current.valid_to, following.valid_from, following.valid_to):
                    continue
                issues.append(PrecedenceIssue(
                    issue_type=ValidationIssueType.OVERLAPPING_VALIDITY_PERIODS,
                    severity=ValidationSeverity.MEDIUM,
                    message=(
                        f"Les listes '{current.name}' et '{following.name}' (priorité {priority}) "
                        f"ont des périodes de validité qui se chevauchent."
                    ),
                    affected_price_list_ids=[current.id, following.id],
                    affected_price_list_names=[current.name, following.name],
                    business_party_id=party_id,
                    suggested_resolution="Ajuster les périodes de validité ou les priorités.",
                ))
        return issues

    @staticmethod
    def _check_expiry_warnings(active: List[PriceList], now: datetime) -> List[PrecedenceWarning]:
        warnings = []
        horizon = now + timedelta(days=price_list_settings.SOON_TO_EXPIRE_DAYS)
        for pl in active:
            if pl.valid_to is None:
                continue
            if pl.valid_to < now:
                warnings.append(PrecedenceWarning(
                    warning_type=ValidationWarningType.STALE_ACTIVE_STATUS,
                    message=f"La liste '{pl.name}' est active mais a expiré le {pl.valid_to:%Y-%m-%d}.",
                    affected_price_list_ids=[pl.id],
                    recommendation="Passer la liste au statut Expired.",
                ))
            elif pl.valid_to <= horizon:
                warnings.append(PrecedenceWarning(
                    warning_type=ValidationWarningType.SOON_TO_EXPIRE,
                    message=f"La liste '{pl.name}' expire le {pl.valid_to:%Y-%m-%d}.",
                    affected_price_list_ids=[pl.id],
                    recommendation="Prolonger la validité ou préparer une liste de remplacement.",
                ))
        if len(active) > price_list_settings.MANY_ACTIVE_LISTS_THRESHOLD:
            warnings.append(PrecedenceWarning(
                warning_type=ValidationWarningType.MANY_ACTIVE_PRICE_LISTS,
                message=f"{len(active)} listes actives: la précédence devient difficile à maîtriser.",
                affected_price_list_ids=[pl.id for pl in active],
                recommendation="Désactiver les listes inutilisées.",
            ))
        return warnings

    @staticmethod
    def _check_entries(active: List[PriceList], entries: List[PriceListEntry]) -> List[PrecedenceWarning]:
        warnings = []
        by_list: Dict[int, List[PriceListEntry]] = defaultdict(list)
        for entry in entries:
            by_list[entry.price_list_id].append(entry)

        for pl in active:
            list_entries = by_list.get(pl.id, [])
            if not list_entries:
                warnings.append(PrecedenceWarning(
                    warning_type=ValidationWarningType.EMPTY_PRICE_LIST,
                    message=f"La liste active '{pl.name}' ne contient aucun prix actif.",
                    affected_price_list_ids=[pl.id],
                    recommendation="Ajouter des prix ou désactiver la liste.",
                ))
                continue
            by_product: Dict[int, List[PriceListEntry]] = defaultdict(list)
            for entry in list_entries:
                by_product[entry.product_id].append(entry)
            for product_id, product_entries in by_product.items():
                ordered = sorted(product_entries, key=lambda e: (e.min_quantity, e.id))
                overlapping = any(
                    tiers_overlap(a.min_quantity, a.max_quantity, b.min_quantity, b.max_quantity)
                    for i, a in enumerate(ordered) for b in ordered[i + 1:]
                )
                if overlapping:
                    warnings.append(PrecedenceWarning(
                        warning_type=ValidationWarningType.OVERLAPPING_QUANTITY_TIERS,
                        message=f"Liste '{pl.name}': paliers de quantité qui se chevauchent pour le produit {product_id}.",
                        affected_price_list_ids=[pl.id],
                        recommendation="Corriger les bornes de quantité des prix concernés.",
                    ))
        return warnings

    def _recommend_default(
        self,
        active: List[PriceList],
        defaults: List[PriceList],
        party_groups: Dict[int, List[Tuple[int, PriceList]]],
        now: datetime,
    ) -> Optional[PriceList]:
        """Même règle que le repli général de la résolution: les listes assignées à un tiers sont écartées."""
        if len(defaults) == 1:
            return defaults[0]
        current_defaults = [pl for pl in defaults if pl.is_valid_at(now)]
        if len(current_defaults) == 1:
            return current_defaults[0]
        candidates = self._general_lists(active, party_groups) or active
        pool = [pl for pl in candidates if pl.is_valid_at(now)] or candidates
        if not pool:
            return None
        return sorted(pool, key=lambda pl: (pl.priority, pl.created_at, pl.id))[0]
