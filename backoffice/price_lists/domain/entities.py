from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from backoffice.price_lists.constants import (
    PriceListStatus, PriceListType, PriceListDirection, EntryStatus, AssignmentStatus
)
from backoffice.price_lists.utils import is_within_window, quantity_in_tier

# Entités du Domaine "Listes de prix"


class PriceList(BaseModel):
    id: int
    name: str
    code: str
    description: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    priority: int = 0
    is_default: bool = False
    status: PriceListStatus = PriceListStatus.ACTIVE
    type: PriceListType = PriceListType.SALES
    direction: PriceListDirection = PriceListDirection.OUTPUT
    event_id: Optional[int] = None
    is_generated_from_documents: bool = False
    created_at: datetime
    created_by: Optional[str] = None
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def is_active(self) -> bool:
        return self.status == PriceListStatus.ACTIVE

    def is_valid_at(self, moment: datetime) -> bool:
        return is_within_window(moment, self.valid_from, self.valid_to)

    def is_expired_at(self, moment: datetime) -> bool:
        return self.status == PriceListStatus.EXPIRED or (self.valid_to is not None and self.valid_to < moment)


class PriceListEntry(BaseModel):
    id: int
    price_list_id: int
    product_id: int
    price: Decimal
    currency: str = "EUR"
    unit_of_measure_id: Optional[int] = None
    min_quantity: int = 1
    max_quantity: int = 0
    score: int = 0
    is_editable_in_frontend: bool = False
    is_discountable: bool = True
    status: EntryStatus = EntryStatus.ACTIVE
    notes: Optional[str] = None
    created_at: datetime
    modified_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_active(self) -> bool:
        return self.status == EntryStatus.ACTIVE

    def matches_quantity(self, quantity: Decimal) -> bool:
        return quantity_in_tier(quantity, self.min_quantity, self.max_quantity)


class BusinessPartyAssignment(BaseModel):
    id: int
    price_list_id: int
    business_party_id: int
    is_primary: bool = False
    override_priority: Optional[int] = None
    global_discount_percentage: Optional[Decimal] = None
    specific_valid_from: Optional[datetime] = None
    specific_valid_to: Optional[datetime] = None
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    notes: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def is_valid_at(self, moment: datetime) -> bool:
        return is_within_window(moment, self.specific_valid_from, self.specific_valid_to)

    def effective_priority(self, price_list: PriceList) -> int:
        return self.override_priority if self.override_priority is not None else price_list.priority


class GenerationMetadata(BaseModel):
    price_list_id: int
    generation_source: str
    calculation_strategy: Optional[str] = None
    rounding_strategy: Optional[str] = None
    markup_percentage: Optional[Decimal] = None
    supplier_id: Optional[int] = None
    analysis_from: Optional[datetime] = None
    analysis_to: Optional[datetime] = None
    documents_analyzed: int = 0
    products_generated: int = 0
    generated_at: datetime
    generated_by: Optional[str] = None

    class Config:
        from_attributes = True


class PriceAuditRecord(BaseModel):
    id: int
    entity_name: str
    entity_id: int
    property_name: str
    old_value: Optional[Decimal] = None
    new_value: Optional[Decimal] = None
    price_list_id: Optional[int] = None
    changed_by: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True
