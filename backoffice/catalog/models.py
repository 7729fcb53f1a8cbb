"""
Tables du catalogue consommées par le module des listes de prix.

Ces données appartiennent aux services produits, TVA et documents: le module
des listes de prix ne les lit qu'au travers des fournisseurs de faits
(`domain/providers.py`), à l'exception du prix par défaut des produits qui peut
être mis à jour par l'application d'une liste.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import SQLModel, Field
from pydantic import ConfigDict


class VatRate(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=50)
    percentage: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2)

    __tablename__ = "vat_rates"
    model_config = ConfigDict(from_attributes=True)


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(max_length=50, index=True)
    name: str = Field(max_length=200)
    default_price: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    vat_rate_id: Optional[int] = Field(default=None, foreign_key="vat_rates.id")
    category_id: Optional[int] = Field(default=None, index=True)
    brand_id: Optional[int] = Field(default=None, index=True)
    # Unité de mesure de base du produit
    unit_of_measure_id: Optional[int] = Field(default=None)
    is_active: bool = Field(default=True)

    __tablename__ = "products"
    model_config = ConfigDict(from_attributes=True)


class ProductUnit(SQLModel, table=True):
    """Unité de mesure alternative d'un produit (facteur exprimé en unités de base)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    unit_of_measure_id: int
    conversion_factor: Decimal = Field(default=Decimal("1"), max_digits=18, decimal_places=6)

    __tablename__ = "product_units"
    model_config = ConfigDict(from_attributes=True)


class BusinessParty(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=200)
    party_type: str = Field(default="Customer", max_length=20)  # Customer, Supplier, Both
    is_active: bool = Field(default=True)

    __tablename__ = "business_parties"
    model_config = ConfigDict(from_attributes=True)


class PurchaseDocument(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    number: str = Field(max_length=50)
    supplier_id: int = Field(foreign_key="business_parties.id", index=True)
    document_date: datetime = Field(index=True)
    status: str = Field(default="Approved", max_length=20)  # Draft, Approved, Closed, Cancelled

    __tablename__ = "purchase_documents"
    model_config = ConfigDict(from_attributes=True)


class PurchaseDocumentLine(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    document_id: int = Field(foreign_key="purchase_documents.id", index=True)
    product_id: int = Field(foreign_key="products.id", index=True)
    unit_price: Decimal = Field(max_digits=18, decimal_places=4)
    quantity: Decimal = Field(default=Decimal("1"), max_digits=18, decimal_places=4)

    __tablename__ = "purchase_document_lines"
    model_config = ConfigDict(from_attributes=True)
