from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional, List

from pydantic import AfterValidator, BaseModel, Field

from backoffice.core.schemas import OrmBaseModel, PaginatedResponse
from backoffice.price_lists.constants import (
    PriceListStatus, PriceListType, PriceListDirection, EntryStatus, AssignmentStatus,
    PriceApplicationMode, PriceSource, RoundingStrategy, BulkOperation,
    PriceCalculationStrategy, ApplyToProductsMode, ValidationSeverity,
    ValidationIssueType, ValidationWarningType,
    MIN_MARKUP_PERCENTAGE, MAX_MARKUP_PERCENTAGE, MIN_DISCOUNT_PERCENTAGE, MAX_DISCOUNT_PERCENTAGE,
    MIN_SCORE, MAX_SCORE,
)
from backoffice.price_lists.utils import to_naive_utc

# Dates reçues: converties en UTC naïf pour être comparables aux dates stockées
UtcDatetime = Annotated[datetime, AfterValidator(to_naive_utc)]

# --- Listes de prix ---

class PriceListBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    valid_from: Optional[UtcDatetime] = None
    valid_to: Optional[UtcDatetime] = None
    priority: int = Field(0, ge=0)
    is_default: bool = False
    type: PriceListType = PriceListType.SALES
    direction: PriceListDirection = PriceListDirection.OUTPUT
    event_id: Optional[int] = None


class PriceListCreate(PriceListBase):
    code: Optional[str] = Field(None, max_length=50)
    status: PriceListStatus = PriceListStatus.ACTIVE
    created_by: Optional[str] = None


class PriceListUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    valid_from: Optional[UtcDatetime] = None
    valid_to: Optional[UtcDatetime] = None
    priority: Optional[int] = Field(None, ge=0)
    is_default: Optional[bool] = None
    event_id: Optional[int] = None
    modified_by: Optional[str] = None


class PriceListStatusUpdate(BaseModel):
    status: PriceListStatus
    modified_by: Optional[str] = None


class PriceListResponse(PriceListBase, OrmBaseModel):
    id: int
    code: str
    status: PriceListStatus
    is_generated_from_documents: bool = False
    created_at: datetime
    created_by: Optional[str] = None
    modified_at: Optional[datetime] = None
    modified_by: Optional[str] = None


class PaginatedPriceListResponse(PaginatedResponse[PriceListResponse]):
    pass


class GenerationMetadataResponse(OrmBaseModel):
    price_list_id: int
    generation_source: str
    calculation_strategy: Optional[str] = None
    rounding_strategy: Optional[str] = None
    markup_percentage: Optional[Decimal] = None
    supplier_id: Optional[int] = None
    analysis_from: Optional[datetime] = None
    analysis_to: Optional[datetime] = None
    documents_analyzed: int
    products_generated: int
    generated_at: datetime
    generated_by: Optional[str] = None


# --- Prix de liste ---

class PriceListEntryCreate(BaseModel):
    product_id: int
    price: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    unit_of_measure_id: Optional[int] = None
    min_quantity: int = 1
    max_quantity: int = 0
    score: int = Field(0, ge=MIN_SCORE, le=MAX_SCORE)
    is_editable_in_frontend: bool = False
    is_discountable: bool = True
    notes: Optional[str] = Field(None, max_length=500)


class PriceListEntryUpdate(BaseModel):
    price: Optional[Decimal] = Field(None, ge=0)
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    score: Optional[int] = Field(None, ge=MIN_SCORE, le=MAX_SCORE)
    is_editable_in_frontend: Optional[bool] = None
    is_discountable: Optional[bool] = None
    status: Optional[EntryStatus] = None
    notes: Optional[str] = Field(None, max_length=500)


class PriceListEntryResponse(OrmBaseModel):
    id: int
    price_list_id: int
    product_id: int
    price: Decimal
    currency: str
    unit_of_measure_id: Optional[int] = None
    min_quantity: int
    max_quantity: int
    score: int
    is_editable_in_frontend: bool
    is_discountable: bool
    status: EntryStatus
    notes: Optional[str] = None
    created_at: datetime
    modified_at: Optional[datetime] = None


# --- Assignations aux tiers ---

class BusinessPartyAssignmentCreate(BaseModel):
    business_party_id: int
    is_primary: bool = False
    override_priority: Optional[int] = Field(None, ge=0)
    global_discount_percentage: Optional[Decimal] = Field(None, ge=MIN_DISCOUNT_PERCENTAGE, le=MAX_DISCOUNT_PERCENTAGE)
    specific_valid_from: Optional[UtcDatetime] = None
    specific_valid_to: Optional[UtcDatetime] = None
    notes: Optional[str] = Field(None, max_length=500)
    created_by: Optional[str] = None


class BusinessPartyAssignmentResponse(OrmBaseModel):
    id: int
    price_list_id: int
    business_party_id: int
    is_primary: bool
    override_priority: Optional[int] = None
    global_discount_percentage: Optional[Decimal] = None
    specific_valid_from: Optional[datetime] = None
    specific_valid_to: Optional[datetime] = None
    status: AssignmentStatus
    notes: Optional[str] = None
    created_at: datetime
    created_by: Optional[str] = None


# --- Résolution de prix ---

class PriceResolutionRequest(BaseModel):
    product_id: int
    business_party_id: Optional[int] = None
    quantity: Decimal = Field(Decimal("1"), gt=0)
    application_mode: PriceApplicationMode = PriceApplicationMode.AUTOMATIC
    forced_price_list_id: Optional[int] = None
    manual_price: Optional[Decimal] = None
    reference_date: Optional[UtcDatetime] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    unit_of_measure_id: Optional[int] = None
    direction: PriceListDirection = PriceListDirection.OUTPUT
    event_id: Optional[int] = None


class AvailablePriceList(BaseModel):
    price_list_id: int
    name: str
    priority: int
    is_party_specific: bool = False
    has_matching_entry: bool = False


class PriceResolutionResult(BaseModel):
    product_id: int
    price: Decimal
    original_price: Decimal
    source: PriceSource
    is_price_from_list: bool
    applied_price_list_id: Optional[int] = None
    applied_price_list_name: Optional[str] = None
    applied_entry_id: Optional[int] = None
    applied_discount_percentage: Optional[Decimal] = None
    currency: str
    unit_of_measure_id: Optional[int] = None
    original_unit_of_measure_id: Optional[int] = None
    is_unit_converted: bool = False
    conversion_factor: Optional[Decimal] = None
    vat_rate_id: Optional[int] = None
    vat_percentage: Optional[Decimal] = None
    search_path: List[str] = []
    available_price_lists: List[AvailablePriceList] = []
    resolved_at: datetime


# --- Validation de la précédence ---

class PrecedenceIssue(BaseModel):
    issue_type: ValidationIssueType
    severity: ValidationSeverity
    message: str
    affected_price_list_ids: List[int] = []
    affected_price_list_names: List[str] = []
    business_party_id: Optional[int] = None
    suggested_resolution: Optional[str] = None


class PrecedenceWarning(BaseModel):
    warning_type: ValidationWarningType
    severity: ValidationSeverity = ValidationSeverity.LOW
    message: str
    affected_price_list_ids: List[int] = []
    recommendation: Optional[str] = None


class PrecedenceValidationResult(BaseModel):
    scope_id: Optional[int] = None
    is_valid: bool
    total_price_lists: int
    active_price_lists: int
    default_price_lists: int
    expired_price_lists: int
    issues: List[PrecedenceIssue] = []
    warnings: List[PrecedenceWarning] = []
    recommended_default_price_list_id: Optional[int] = None
    recommended_default_price_list_name: Optional[str] = None
    validated_at: datetime
    validation_duration_ms: float


# --- Mise à jour massive ---

class BulkUpdateRequest(BaseModel):
    operation: BulkOperation
    value: Decimal = Field(..., ge=0)
    rounding_strategy: RoundingStrategy = RoundingStrategy.NONE
    product_ids: Optional[List[int]] = None
    category_ids: Optional[List[int]] = None
    brand_ids: Optional[List[int]] = None
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)
    updated_by: Optional[str] = None


class BulkUpdatePreviewItem(BaseModel):
    entry_id: int
    product_id: int
    product_name: Optional[str] = None
    product_code: Optional[str] = None
    current_price: Decimal
    new_price: Decimal
    change_amount: Decimal
    change_percentage: Decimal


class BulkUpdatePreview(BaseModel):
    price_list_id: int
    price_list_name: str
    operation: BulkOperation
    value: Decimal
    rounding_strategy: RoundingStrategy
    affected_count: int
    total_current_value: Decimal
    total_new_value: Decimal
    average_change_percentage: Decimal
    items: List[BulkUpdatePreviewItem] = []


class BulkUpdateItemResult(BaseModel):
    entry_id: int
    product_id: int
    old_price: Decimal
    new_price: Decimal
    success: bool
    error_message: Optional[str] = None


class BulkUpdateResult(BaseModel):
    price_list_id: int
    updated_count: int
    failed_count: int
    rolled_back: bool
    items: List[BulkUpdateItemResult] = []
    errors: List[str] = []
    updated_at: datetime
    updated_by: Optional[str] = None


# --- Génération ---

class PriceListGenerationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=500)
    priority: int = Field(0, ge=0)
    is_default: bool = False
    valid_from: Optional[UtcDatetime] = None
    valid_to: Optional[UtcDatetime] = None
    event_id: Optional[int] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    markup_percentage: Decimal = Field(Decimal("0"), ge=MIN_MARKUP_PERCENTAGE, le=MAX_MARKUP_PERCENTAGE)
    rounding_strategy: RoundingStrategy = RoundingStrategy.NONE
    category_ids: Optional[List[int]] = None
    only_active_products: bool = True
    created_by: Optional[str] = None


class GenerateFromProductsRequest(PriceListGenerationBase):
    type: PriceListType = PriceListType.SALES
    direction: PriceListDirection = PriceListDirection.OUTPUT
    only_products_with_price: bool = True
    minimum_price: Optional[Decimal] = Field(None, ge=0)
    business_party_ids: Optional[List[int]] = None


class GenerateFromPurchasesRequest(PriceListGenerationBase):
    supplier_id: Optional[int] = None
    from_date: UtcDatetime
    to_date: UtcDatetime
    calculation_strategy: PriceCalculationStrategy = PriceCalculationStrategy.LAST_PURCHASE_PRICE
    minimum_quantity: Optional[Decimal] = Field(None, ge=0)


class GeneratedPriceItemPreview(BaseModel):
    product_id: int
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    calculated_price: Decimal
    original_price: Decimal
    occurrences: int
    total_quantity: Decimal
    lowest_price: Decimal
    highest_price: Decimal
    average_price: Decimal
    last_purchase_date: datetime


class GeneratePriceListPreview(BaseModel):
    supplier_id: int
    supplier_name: Optional[str] = None
    calculation_strategy: PriceCalculationStrategy
    rounding_strategy: RoundingStrategy
    markup_percentage: Decimal
    analysis_from: datetime
    analysis_to: datetime
    documents_analyzed: int
    products_found: int
    products_with_multiple_prices: int
    total_estimated_value: Decimal
    items: List[GeneratedPriceItemPreview] = []
    warnings: List[str] = []
    generated_at: datetime


class PriceListGenerationResult(BaseModel):
    price_list: PriceListResponse
    products_generated: int
    products_skipped: int = 0
    business_parties_assigned: int = 0
    metadata: GenerationMetadataResponse


class UpdateFromPurchasesRequest(BaseModel):
    supplier_id: Optional[int] = None
    from_date: Optional[UtcDatetime] = None
    to_date: Optional[UtcDatetime] = None
    calculation_strategy: PriceCalculationStrategy = PriceCalculationStrategy.LAST_PURCHASE_PRICE
    markup_percentage: Decimal = Field(Decimal("0"), ge=MIN_MARKUP_PERCENTAGE, le=MAX_MARKUP_PERCENTAGE)
    rounding_strategy: RoundingStrategy = RoundingStrategy.NONE
    add_new_products: bool = True
    remove_obsolete_products: bool = False
    updated_by: Optional[str] = None


class UpdateFromPurchasesResult(BaseModel):
    price_list_id: int
    supplier_id: int
    analysis_from: datetime
    analysis_to: datetime
    updated_count: int
    added_count: int
    removed_count: int
    unchanged_count: int
    warnings: List[str] = []
    updated_at: datetime


# --- Duplication / application ---

class DuplicatePriceListRequest(BaseModel):
    new_name: str = Field(..., min_length=1, max_length=100)
    new_code: Optional[str] = Field(None, max_length=50)
    new_description: Optional[str] = Field(None, max_length=500)
    copy_prices: bool = True
    copy_business_parties: bool = False
    apply_markup_percentage: Optional[Decimal] = Field(None, ge=MIN_MARKUP_PERCENTAGE, le=MAX_MARKUP_PERCENTAGE)
    rounding_strategy: RoundingStrategy = RoundingStrategy.NONE
    new_valid_from: Optional[UtcDatetime] = None
    new_valid_to: Optional[UtcDatetime] = None
    new_priority: Optional[int] = Field(None, ge=0)
    new_event_id: Optional[int] = None
    new_type: Optional[PriceListType] = None
    new_direction: Optional[PriceListDirection] = None
    new_status: PriceListStatus = PriceListStatus.ACTIVE
    only_active_prices: bool = False
    filter_product_ids: Optional[List[int]] = None
    filter_category_ids: Optional[List[int]] = None
    created_by: Optional[str] = None


class DuplicatePriceListResult(BaseModel):
    source_price_list_id: int
    source_price_list_name: str
    new_price_list: PriceListResponse
    source_price_count: int
    copied_price_count: int
    skipped_price_count: int
    copied_business_parties_count: int
    applied_markup_percentage: Optional[Decimal] = None
    applied_rounding_strategy: RoundingStrategy
    created_at: datetime
    created_by: Optional[str] = None


class ApplyToProductsRequest(BaseModel):
    mode: ApplyToProductsMode = ApplyToProductsMode.UPDATE_ALL
    only_update_if_higher: bool = False
    only_update_if_lower: bool = False
    filter_product_ids: Optional[List[int]] = None
    filter_category_ids: Optional[List[int]] = None
    create_backup: bool = True
    applied_by: Optional[str] = None


class ProductPriceUpdateDetail(BaseModel):
    product_id: int
    product_code: Optional[str] = None
    product_name: Optional[str] = None
    old_price: Optional[Decimal] = None
    new_price: Decimal
    updated: bool
    reason: str


class ApplyToProductsResult(BaseModel):
    price_list_id: int
    price_list_name: str
    products_updated: int
    products_skipped: int
    products_not_found: int
    backup_created: bool
    details: List[ProductPriceUpdateDetail] = []
    applied_at: datetime
    applied_by: Optional[str] = None
