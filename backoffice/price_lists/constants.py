"""
Constantes et énumérations du module des listes de prix.
"""
from decimal import Decimal
from enum import Enum


class PriceListStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    EXPIRED = "Expired"


class PriceListType(str, Enum):
    SALES = "Sales"
    PURCHASE = "Purchase"


class PriceListDirection(str, Enum):
    OUTPUT = "Output"  # Vente
    INPUT = "Input"    # Achat


class EntryStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class AssignmentStatus(str, Enum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    DELETED = "Deleted"


class PriceApplicationMode(str, Enum):
    AUTOMATIC = "Automatic"
    MANUAL = "Manual"
    FORCED_PRICE_LIST = "ForcedPriceList"
    HYBRID = "HybridForcedWithOverrides"


class PriceSource(str, Enum):
    MANUAL = "Manual"
    FORCED_LIST = "ForcedList"
    PARTY_LIST = "PartyList"
    GENERAL_LIST = "GeneralList"
    DEFAULT_PRICE = "DefaultPrice"


class RoundingStrategy(str, Enum):
    NONE = "None"
    TO_NEAREST_CENT = "ToNearestCent"
    TO_NEAREST_5_CENTS = "ToNearest5Cents"
    TO_NEAREST_10_CENTS = "ToNearest10Cents"
    TO_NEAREST_50_CENTS = "ToNearest50Cents"
    TO_NEAREST_UNIT = "ToNearestUnit"
    ROUND_UP_TO_UNIT = "RoundUpToUnit"
    ROUND_DOWN_TO_UNIT = "RoundDownToUnit"
    TO_99_CENTS = "To99Cents"


class BulkOperation(str, Enum):
    INCREASE = "Increase"
    DECREASE = "Decrease"
    PERCENTAGE_INCREASE = "PercentageIncrease"
    PERCENTAGE_DECREASE = "PercentageDecrease"
    SET = "Set"
    MULTIPLY = "Multiply"


class PriceCalculationStrategy(str, Enum):
    LAST_PURCHASE_PRICE = "LastPurchasePrice"
    AVERAGE_PRICE = "AveragePrice"
    WEIGHTED_AVERAGE_PRICE = "WeightedAveragePrice"
    LOWEST_PRICE = "LowestPrice"
    HIGHEST_PRICE = "HighestPrice"
    MEDIAN_PRICE = "MedianPrice"
    MOST_FREQUENT_PRICE = "MostFrequentPrice"


class GenerationSource(str, Enum):
    PRODUCTS = "Products"
    PURCHASE_DOCUMENTS = "PurchaseDocuments"


class ApplyToProductsMode(str, Enum):
    UPDATE_EXISTING = "UpdateExisting"
    UPDATE_ALL = "UpdateAll"


class ValidationSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class ValidationIssueType(str, Enum):
    NO_PRICE_LISTS_FOUND = "NoPriceListsFound"
    MULTIPLE_DEFAULT_PRICE_LISTS = "MultipleDefaultPriceLists"
    NO_DEFAULT_PRICE_LIST = "NoDefaultPriceList"
    DUPLICATE_PRIORITIES = "DuplicatePriorities"
    OVERLAPPING_VALIDITY_PERIODS = "OverlappingValidityPeriods"
    EXPIRED_PRICE_LISTS_ONLY = "ExpiredPriceListsOnly"


class ValidationWarningType(str, Enum):
    SOON_TO_EXPIRE = "SoonToExpire"
    MANY_ACTIVE_PRICE_LISTS = "ManyActivePriceLists"
    STALE_ACTIVE_STATUS = "StaleActiveStatus"
    EMPTY_PRICE_LIST = "EmptyPriceList"
    OVERLAPPING_QUANTITY_TIERS = "OverlappingQuantityTiers"


# Transitions de statut autorisées (jamais de suppression physique)
ALLOWED_STATUS_TRANSITIONS = {
    PriceListStatus.ACTIVE: {PriceListStatus.INACTIVE, PriceListStatus.EXPIRED},
    PriceListStatus.INACTIVE: {PriceListStatus.ACTIVE, PriceListStatus.EXPIRED},
    PriceListStatus.EXPIRED: {PriceListStatus.INACTIVE},
}

# Bornes métier
MIN_MARKUP_PERCENTAGE = Decimal("-100")
MAX_MARKUP_PERCENTAGE = Decimal("1000")
MIN_DISCOUNT_PERCENTAGE = Decimal("-100")
MAX_DISCOUNT_PERCENTAGE = Decimal("100")
MIN_SCORE = 0
MAX_SCORE = 100

# Écart minimal pour considérer qu'un prix a changé
PRICE_CHANGE_TOLERANCE = Decimal("0.001")

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Motifs retournés par l'application d'une liste aux produits
APPLY_REASON_UPDATED = "Updated"
APPLY_REASON_NOT_FOUND = "Skipped: product not found in catalog"
APPLY_REASON_CATEGORY_FILTER = "Skipped: category filter"
APPLY_REASON_NOT_HIGHER = "Skipped: guard condition not met (not higher)"
APPLY_REASON_NOT_LOWER = "Skipped: guard condition not met (not lower)"
APPLY_REASON_NO_EXISTING_PRICE = "Skipped: product has no existing price"
APPLY_REASON_UNCHANGED = "Skipped: price unchanged"

DUPLICATE_DESCRIPTION_TEMPLATE = "Duplicated from: {name}"
