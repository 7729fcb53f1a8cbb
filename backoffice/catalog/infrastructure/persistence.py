import logging
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.catalog import models
from backoffice.catalog.domain.entities import (
    ProductFacts, VatRateFacts, BusinessPartyFacts, PurchaseLineFact
)
from backoffice.catalog.domain.providers import (
    AbstractCatalogFactsProvider, AbstractDocumentHistoryProvider
)
from backoffice.price_lists.domain.exceptions import ProductNotFoundException

logger = logging.getLogger(__name__)

EXCLUDED_DOCUMENT_STATUSES = ("Draft", "Cancelled")


class SQLAlchemyCatalogFactsProvider(AbstractCatalogFactsProvider):
    """Lecture des faits du catalogue depuis la base relationnelle partagée."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: int) -> Optional[ProductFacts]:
        product_db = await self.session.get(models.Product, product_id)
        if product_db is None:
            logger.debug(f"Produit ID {product_id} non trouvé dans le catalogue.")
            return None
        return ProductFacts.model_validate(product_db)

    async def get_products(self, product_ids: Iterable[int]) -> Dict[int, ProductFacts]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        stmt = select(models.Product).where(models.Product.id.in_(ids))
        result = await self.session.execute(stmt)
        return {p.id: ProductFacts.model_validate(p) for p in result.scalars().all()}

    async def list_products(
        self,
        only_active: bool = True,
        category_ids: Optional[List[int]] = None,
        minimum_price: Optional[Decimal] = None,
    ) -> List[ProductFacts]:
        stmt = select(models.Product)
        if only_active:
            stmt = stmt.where(models.Product.is_active.is_(True))
        if category_ids:
            stmt = stmt.where(models.Product.category_id.in_(category_ids))
        if minimum_price is not None:
            stmt = stmt.where(models.Product.default_price >= minimum_price)
        stmt = stmt.order_by(models.Product.id)
        result = await self.session.execute(stmt)
        return [ProductFacts.model_validate(p) for p in result.scalars().all()]

    async def get_default_price(self, product_id: int) -> Optional[Decimal]:
        product = await self.get_product(product_id)
        return product.default_price if product else None

    async def get_unit_conversion(self, product_id: int, from_unit_id: int, to_unit_id: int) -> Optional[Decimal]:
        if from_unit_id == to_unit_id:
            return Decimal("1")
        product_db = await self.session.get(models.Product, product_id)
        if product_db is None:
            return None

        stmt = select(models.ProductUnit).where(models.ProductUnit.product_id == product_id)
        result = await self.session.execute(stmt)
        factors = {u.unit_of_measure_id: Decimal(u.conversion_factor) for u in result.scalars().all()}
        # L'unité de base vaut 1 unité de base
        if product_db.unit_of_measure_id is not None:
            factors.setdefault(product_db.unit_of_measure_id, Decimal("1"))

        from_factor = factors.get(from_unit_id)
        to_factor = factors.get(to_unit_id)
        if not from_factor or to_factor is None:
            logger.debug(f"Aucune conversion {from_unit_id}->{to_unit_id} pour le produit {product_id}.")
            return None
        return to_factor / from_factor

    async def get_vat_rate(self, vat_rate_id: int) -> Optional[VatRateFacts]:
        vat_db = await self.session.get(models.VatRate, vat_rate_id)
        return VatRateFacts.model_validate(vat_db) if vat_db else None

    async def get_business_party(self, business_party_id: int) -> Optional[BusinessPartyFacts]:
        party_db = await self.session.get(models.BusinessParty, business_party_id)
        return BusinessPartyFacts.model_validate(party_db) if party_db else None

    async def set_default_price(self, product_id: int, price: Decimal) -> None:
        product_db = await self.session.get(models.Product, product_id)
        if product_db is None:
            raise ProductNotFoundException(product_id)
        product_db.default_price = price
        self.session.add(product_db)
        await self.session.flush()


class SQLAlchemyDocumentHistoryProvider(AbstractDocumentHistoryProvider):
    """Lecture paginée (par clé) des lignes de documents d'achat."""

    def __init__(self, session: AsyncSession, page_size: int = 500):
        self.session = session
        self.page_size = page_size

    async def query_purchase_lines(
        self, supplier_id: int, from_date: datetime, to_date: datetime
    ) -> AsyncIterator[PurchaseLineFact]:
        last_line_id = 0
        while True:
            stmt = (
                select(models.PurchaseDocumentLine, models.PurchaseDocument)
                .join(models.PurchaseDocument, models.PurchaseDocument.id == models.PurchaseDocumentLine.document_id)
                .where(
                    models.PurchaseDocument.supplier_id == supplier_id,
                    models.PurchaseDocument.document_date >= from_date,
                    models.PurchaseDocument.document_date <= to_date,
                    models.PurchaseDocument.status.not_in(EXCLUDED_DOCUMENT_STATUSES),
                    models.PurchaseDocumentLine.id > last_line_id,
                )
                .order_by(models.PurchaseDocumentLine.id)
                .limit(self.page_size)
            )
            result = await self.session.execute(stmt)
            rows = result.all()
            if not rows:
                break
            for line, document in rows:
                yield PurchaseLineFact(
                    line_id=line.id,
                    document_id=document.id,
                    supplier_id=document.supplier_id,
                    product_id=line.product_id,
                    price=Decimal(line.unit_price),
                    quantity=Decimal(line.quantity),
                    date=document.document_date,
                )
            last_line_id = rows[-1][0].id
            if len(rows) < self.page_size:
                break
