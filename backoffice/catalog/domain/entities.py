from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

# Faits du catalogue tels que consommés par le module des listes de prix


class ProductFacts(BaseModel):
    id: int
    code: str
    name: str
    default_price: Optional[Decimal] = None
    vat_rate_id: Optional[int] = None
    category_id: Optional[int] = None
    brand_id: Optional[int] = None
    unit_of_measure_id: Optional[int] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class VatRateFacts(BaseModel):
    id: int
    name: str
    percentage: Decimal

    class Config:
        from_attributes = True


class BusinessPartyFacts(BaseModel):
    id: int
    name: str
    party_type: str
    is_active: bool = True

    class Config:
        from_attributes = True


class PurchaseLineFact(BaseModel):
    """Ligne d'un document d'achat historique."""
    line_id: int
    document_id: int
    supplier_id: int
    product_id: int
    price: Decimal
    quantity: Decimal
    date: datetime
