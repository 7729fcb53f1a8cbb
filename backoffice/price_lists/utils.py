"""
Utilitaires de calcul de prix du module des listes de prix.

Toutes les fonctions sont pures: l'aperçu et l'application d'une mise à jour
massive passent par les mêmes fonctions et obtiennent donc les mêmes valeurs.
"""
import re
import statistics
import unicodedata
from collections import Counter
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING, ROUND_FLOOR
from typing import Iterable, List, Optional, Tuple

from .constants import (
    RoundingStrategy, BulkOperation, PriceCalculationStrategy,
    CENT, ZERO, HUNDRED,
)

# Table d'arrondi: (pas, mode d'arrondi Decimal)
ROUNDING_TABLE = {
    RoundingStrategy.TO_NEAREST_CENT: (Decimal("0.01"), ROUND_HALF_UP),
    RoundingStrategy.TO_NEAREST_5_CENTS: (Decimal("0.05"), ROUND_HALF_UP),
    RoundingStrategy.TO_NEAREST_10_CENTS: (Decimal("0.10"), ROUND_HALF_UP),
    RoundingStrategy.TO_NEAREST_50_CENTS: (Decimal("0.50"), ROUND_HALF_UP),
    RoundingStrategy.TO_NEAREST_UNIT: (Decimal("1"), ROUND_HALF_UP),
    RoundingStrategy.ROUND_UP_TO_UNIT: (Decimal("1"), ROUND_CEILING),
    RoundingStrategy.ROUND_DOWN_TO_UNIT: (Decimal("1"), ROUND_FLOOR),
}


def to_decimal(value) -> Decimal:
    """Convertit une valeur numérique en Decimal sans passer par la représentation binaire d'un float."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def apply_rounding(price: Decimal, strategy: Optional[RoundingStrategy]) -> Decimal:
    """
    Arrondit un prix selon la stratégie donnée.

    Args:
        price: Prix à arrondir
        strategy: Stratégie d'arrondi (None ou NONE laisse le prix inchangé)

    Returns:
        Decimal: Prix arrondi (deux décimales, sauf pour NONE)
    """
    price = to_decimal(price)
    if strategy is None or strategy == RoundingStrategy.NONE:
        return price
    if strategy == RoundingStrategy.TO_99_CENTS:
        return price.quantize(Decimal("1"), rounding=ROUND_FLOOR) + Decimal("0.99")

    step, mode = ROUNDING_TABLE[strategy]
    units = (price / step).quantize(Decimal("1"), rounding=mode)
    return (units * step).quantize(CENT)


def apply_markup(price: Decimal, markup_percentage: Optional[Decimal]) -> Decimal:
    """Applique une majoration (ou une minoration si négative) en pourcentage."""
    price = to_decimal(price)
    if not markup_percentage:
        return price
    return price * (1 + to_decimal(markup_percentage) / HUNDRED)


def apply_discount(price: Decimal, discount_percentage: Optional[Decimal]) -> Decimal:
    """Applique une remise en pourcentage (une remise négative est une majoration)."""
    price = to_decimal(price)
    if not discount_percentage:
        return price
    return price * (1 - to_decimal(discount_percentage) / HUNDRED)


def apply_bulk_operation(current_price: Decimal, operation: BulkOperation, value: Decimal) -> Decimal:
    """Calcule le nouveau prix brut (avant arrondi) pour une opération de mise à jour massive."""
    p = to_decimal(current_price)
    v = to_decimal(value)
    if operation == BulkOperation.INCREASE:
        return p + v
    if operation == BulkOperation.DECREASE:
        return p - v
    if operation == BulkOperation.PERCENTAGE_INCREASE:
        return p * (1 + v / HUNDRED)
    if operation == BulkOperation.PERCENTAGE_DECREASE:
        return p * (1 - v / HUNDRED)
    if operation == BulkOperation.SET:
        return v
    if operation == BulkOperation.MULTIPLY:
        return p * v
    raise ValueError(f"Opération inconnue: {operation}")


def compute_new_price(
    current_price: Decimal,
    operation: BulkOperation,
    value: Decimal,
    rounding_strategy: Optional[RoundingStrategy],
) -> Decimal:
    """Opération, puis arrondi, puis plancher à zéro."""
    new_price = apply_bulk_operation(current_price, operation, value)
    new_price = apply_rounding(new_price, rounding_strategy)
    return max(new_price, ZERO)


def percentage_change(current_price: Decimal, new_price: Decimal) -> Decimal:
    """Variation en pourcentage (0 si le prix courant est nul)."""
    current_price = to_decimal(current_price)
    if current_price == 0:
        return ZERO
    return ((to_decimal(new_price) - current_price) / current_price * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_strategy_price(
    observations: List[Tuple[Decimal, Decimal, datetime, int]],
    strategy: PriceCalculationStrategy,
) -> Decimal:
    """
    Calcule le prix d'un produit à partir de ses observations d'achat.

    Args:
        observations: Liste de tuples (prix, quantité, date, id de ligne)
        strategy: Stratégie de calcul

    Returns:
        Decimal: Prix retenu (avant majoration et arrondi)
    """
    if not observations:
        raise ValueError("Aucune observation de prix.")
    prices = [o[0] for o in observations]

    if strategy == PriceCalculationStrategy.LAST_PURCHASE_PRICE:
        # Date la plus récente, puis ligne la plus récente
        return max(observations, key=lambda o: (o[2], o[3]))[0]
    if strategy == PriceCalculationStrategy.AVERAGE_PRICE:
        return sum(prices, ZERO) / len(prices)
    if strategy == PriceCalculationStrategy.WEIGHTED_AVERAGE_PRICE:
        total_quantity = sum((o[1] for o in observations), ZERO)
        if total_quantity == 0:
            return sum(prices, ZERO) / len(prices)
        return sum((o[0] * o[1] for o in observations), ZERO) / total_quantity
    if strategy == PriceCalculationStrategy.LOWEST_PRICE:
        return min(prices)
    if strategy == PriceCalculationStrategy.HIGHEST_PRICE:
        return max(prices)
    if strategy == PriceCalculationStrategy.MEDIAN_PRICE:
        return to_decimal(statistics.median(prices))
    if strategy == PriceCalculationStrategy.MOST_FREQUENT_PRICE:
        counts = Counter(prices)
        best_count = max(counts.values())
        # Égalité: le prix observé le plus récemment l'emporte
        tied = [o for o in observations if counts[o[0]] == best_count]
        return max(tied, key=lambda o: (o[2], o[3]))[0]
    raise ValueError(f"Stratégie de calcul inconnue: {strategy}")


def to_naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Ramène une date avec fuseau en UTC naïf, comme les dates stockées."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def is_within_window(moment: datetime, valid_from: Optional[datetime], valid_to: Optional[datetime]) -> bool:
    """Bornes optionnelles et inclusives."""
    if valid_from is not None and moment < valid_from:
        return False
    if valid_to is not None and moment > valid_to:
        return False
    return True


def quantity_in_tier(quantity: Decimal, min_quantity: int, max_quantity: int) -> bool:
    """MaxQuantity = 0 signifie illimité."""
    if quantity < min_quantity:
        return False
    return max_quantity == 0 or quantity <= max_quantity


def tiers_overlap(min_a: int, max_a: int, min_b: int, max_b: int) -> bool:
    end_a = max_a if max_a else None
    end_b = max_b if max_b else None
    if end_a is not None and end_a < min_b:
        return False
    if end_b is not None and end_b < min_a:
        return False
    return True


def windows_overlap(
    start_a: Optional[datetime], end_a: Optional[datetime],
    start_b: Optional[datetime], end_b: Optional[datetime],
) -> bool:
    if end_a is not None and start_b is not None and end_a < start_b:
        return False
    if end_b is not None and start_a is not None and end_b < start_a:
        return False
    return True


def generate_code_from_name(name: str, max_length: int = 20) -> str:
    """
    Construit un code de liste à partir de son nom.

    Majuscules, accents supprimés, caractères non alphanumériques remplacés par '-'.
    """
    normalized = unicodedata.normalize("NFKD", name)
    ascii_name = "".join(c for c in normalized if not unicodedata.combining(c))
    code = re.sub(r"[^A-Z0-9]+", "-", ascii_name.upper()).strip("-")
    return code[:max_length].rstrip("-")


def unique_code(base_code: str, existing_codes: Iterable[str], max_length: int = 20) -> str:
    """Ajoute un suffixe -N au code tant qu'il est déjà utilisé."""
    existing = set(existing_codes)
    if base_code not in existing:
        return base_code
    counter = 1
    while True:
        suffix = f"-{counter}"
        candidate = f"{base_code[:max_length - len(suffix)]}{suffix}"
        if candidate not in existing:
            return candidate
        counter += 1
