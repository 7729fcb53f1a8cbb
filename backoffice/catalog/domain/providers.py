"""Contrats des fournisseurs de faits externes (catalogue et historique des documents)."""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Dict, Iterable, List, Optional

from backoffice.catalog.domain.entities import (
    ProductFacts, VatRateFacts, BusinessPartyFacts, PurchaseLineFact
)


class AbstractCatalogFactsProvider(ABC):
    """Faits produits, TVA, unités de mesure et tiers."""

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[ProductFacts]:
        raise NotImplementedError

    @abstractmethod
    async def get_products(self, product_ids: Iterable[int]) -> Dict[int, ProductFacts]:
        """Retourne les produits trouvés, indexés par ID (les IDs inconnus sont absents)."""
        raise NotImplementedError

    @abstractmethod
    async def list_products(
        self,
        only_active: bool = True,
        category_ids: Optional[List[int]] = None,
        minimum_price: Optional[Decimal] = None,
    ) -> List[ProductFacts]:
        raise NotImplementedError

    @abstractmethod
    async def get_default_price(self, product_id: int) -> Optional[Decimal]:
        raise NotImplementedError

    @abstractmethod
    async def get_unit_conversion(self, product_id: int, from_unit_id: int, to_unit_id: int) -> Optional[Decimal]:
        """Facteur multiplicatif pour passer un prix de `from_unit_id` à `to_unit_id` (None si inconnu)."""
        raise NotImplementedError

    @abstractmethod
    async def get_vat_rate(self, vat_rate_id: int) -> Optional[VatRateFacts]:
        raise NotImplementedError

    @abstractmethod
    async def get_business_party(self, business_party_id: int) -> Optional[BusinessPartyFacts]:
        raise NotImplementedError

    @abstractmethod
    async def set_default_price(self, product_id: int, price: Decimal) -> None:
        """Met à jour le prix par défaut d'un produit (sans commit)."""
        raise NotImplementedError


class AbstractDocumentHistoryProvider(ABC):
    """Historique des documents d'achat."""

    @abstractmethod
    def query_purchase_lines(
        self, supplier_id: int, from_date: datetime, to_date: datetime
    ) -> AsyncIterator[PurchaseLineFact]:
        """Flux des lignes d'achat du fournisseur dans la fenêtre [from_date, to_date]."""
        raise NotImplementedError
