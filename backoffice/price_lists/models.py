"""
Modèles SQLModel des listes de prix.

- PriceList: en-tête (fenêtre de validité, priorité, défaut, statut, type, direction)
- PriceListEntry: prix d'un produit dans une liste, par palier de quantité
- PriceListBusinessParty: assignation d'une liste à un tiers
- PriceListGenerationMetadata: trace immuable d'une génération
- PriceAuditLog: sauvegarde des prix par défaut écrasés
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlmodel import SQLModel, Field, Relationship
from pydantic import ConfigDict

from .constants import (
    PriceListStatus, PriceListType, PriceListDirection, EntryStatus, AssignmentStatus
)


class PriceList(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    code: str = Field(max_length=50, unique=True, index=True)
    description: Optional[str] = Field(default=None, max_length=500)
    valid_from: Optional[datetime] = Field(default=None)
    valid_to: Optional[datetime] = Field(default=None)
    priority: int = Field(default=0, ge=0)  # 0 = priorité la plus haute
    is_default: bool = Field(default=False)
    status: str = Field(default=PriceListStatus.ACTIVE.value, max_length=20, index=True)
    type: str = Field(default=PriceListType.SALES.value, max_length=20)
    direction: str = Field(default=PriceListDirection.OUTPUT.value, max_length=20)
    event_id: Optional[int] = Field(default=None, index=True)
    is_generated_from_documents: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: Optional[str] = Field(default=None, max_length=100)
    modified_at: Optional[datetime] = Field(default=None)
    modified_by: Optional[str] = Field(default=None, max_length=100)

    entries: List["PriceListEntry"] = Relationship(back_populates="price_list")
    business_parties: List["PriceListBusinessParty"] = Relationship(back_populates="price_list")

    __tablename__ = "price_lists"
    model_config = ConfigDict(from_attributes=True)


class PriceListEntry(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    price_list_id: int = Field(foreign_key="price_lists.id", index=True)
    product_id: int = Field(index=True)
    price: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=4)
    currency: str = Field(default="EUR", max_length=3)
    unit_of_measure_id: Optional[int] = Field(default=None)
    min_quantity: int = Field(default=1, ge=1)
    max_quantity: int = Field(default=0, ge=0)  # 0 = illimité
    score: int = Field(default=0, ge=0, le=100)
    is_editable_in_frontend: bool = Field(default=False)
    is_discountable: bool = Field(default=True)
    status: str = Field(default=EntryStatus.ACTIVE.value, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    modified_at: Optional[datetime] = Field(default=None)

    price_list: Optional[PriceList] = Relationship(back_populates="entries")

    __tablename__ = "price_list_entries"
    model_config = ConfigDict(from_attributes=True)


class PriceListBusinessParty(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    price_list_id: int = Field(foreign_key="price_lists.id", index=True)
    business_party_id: int = Field(index=True)
    is_primary: bool = Field(default=False)
    override_priority: Optional[int] = Field(default=None, ge=0)
    global_discount_percentage: Optional[Decimal] = Field(default=None, max_digits=5, decimal_places=2)
    specific_valid_from: Optional[datetime] = Field(default=None)
    specific_valid_to: Optional[datetime] = Field(default=None)
    status: str = Field(default=AssignmentStatus.ACTIVE.value, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: Optional[str] = Field(default=None, max_length=100)

    price_list: Optional[PriceList] = Relationship(back_populates="business_parties")

    __tablename__ = "price_list_business_parties"
    model_config = ConfigDict(from_attributes=True)


class PriceListGenerationMetadata(SQLModel, table=True):
    price_list_id: int = Field(foreign_key="price_lists.id", primary_key=True)
    generation_source: str = Field(max_length=30)
    calculation_strategy: Optional[str] = Field(default=None, max_length=30)
    rounding_strategy: Optional[str] = Field(default=None, max_length=30)
    markup_percentage: Optional[Decimal] = Field(default=None, max_digits=7, decimal_places=2)
    supplier_id: Optional[int] = Field(default=None)
    analysis_from: Optional[datetime] = Field(default=None)
    analysis_to: Optional[datetime] = Field(default=None)
    documents_analyzed: int = Field(default=0)
    products_generated: int = Field(default=0)
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    generated_by: Optional[str] = Field(default=None, max_length=100)

    __tablename__ = "price_list_generation_metadata"
    model_config = ConfigDict(from_attributes=True)


class PriceAuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    entity_name: str = Field(default="Product", max_length=50)
    entity_id: int = Field(index=True)
    property_name: str = Field(default="default_price", max_length=50)
    old_value: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    new_value: Optional[Decimal] = Field(default=None, max_digits=18, decimal_places=4)
    price_list_id: Optional[int] = Field(default=None, foreign_key="price_lists.id")
    changed_by: Optional[str] = Field(default=None, max_length=100)
    changed_at: datetime = Field(default_factory=datetime.utcnow)

    __tablename__ = "price_audit_logs"
    model_config = ConfigDict(from_attributes=True)
