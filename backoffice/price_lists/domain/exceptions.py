"""Exceptions spécifiques au domaine des listes de prix."""
from typing import Optional


class PriceListDomainException(Exception):
    """Classe de base pour les exceptions du domaine des listes de prix."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# --- Catégories ---

class PriceListValidationError(PriceListDomainException):
    """Entrée invalide ou incomplète, rejetée avant tout calcul."""
    pass


class PriceListNotFoundError(PriceListDomainException):
    """Ressource référencée absente."""
    pass


class PriceListConflictError(PriceListDomainException):
    """Options ou données mutuellement incompatibles."""
    pass


class PriceListPersistenceError(PriceListDomainException):
    """Échec d'écriture dans le store, transaction annulée."""
    pass


# --- Validation ---

class InvalidPriceRequestException(PriceListValidationError):
    pass


class SupplierRequiredException(PriceListValidationError):
    def __init__(self):
        super().__init__("Un fournisseur est obligatoire pour générer une liste depuis les documents d'achat.")


class InvalidDateRangeException(PriceListValidationError):
    pass


class InvalidQuantityTierException(PriceListValidationError):
    def __init__(self, min_quantity: int, max_quantity: int):
        super().__init__(
            f"Palier de quantité invalide: min={min_quantity}, max={max_quantity} "
            f"(min >= 1 et max = 0 ou max >= min)."
        )
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity


class InvalidStatusTransitionException(PriceListValidationError):
    def __init__(self, current_status: str, new_status: str):
        super().__init__(f"Transition de statut interdite: {current_status} -> {new_status}.")
        self.current_status = current_status
        self.new_status = new_status


class NoDocumentsInRangeException(PriceListValidationError):
    def __init__(self, supplier_id: int):
        super().__init__(f"Aucun document d'achat trouvé pour le fournisseur {supplier_id} dans la période.")
        self.supplier_id = supplier_id


# --- Introuvables ---

class PriceListNotFoundException(PriceListNotFoundError):
    def __init__(self, price_list_id: int):
        super().__init__(f"Liste de prix avec ID {price_list_id} non trouvée.")
        self.price_list_id = price_list_id


class PriceListNotActiveException(PriceListNotFoundError):
    """La liste existe mais n'est pas active ou valide à la date demandée."""
    def __init__(self, price_list_id: int, reason: str):
        super().__init__(f"Liste de prix {price_list_id} non utilisable: {reason}.")
        self.price_list_id = price_list_id
        self.reason = reason


class PriceListEntryNotFoundException(PriceListNotFoundError):
    def __init__(self, price_list_id: Optional[int] = None, product_id: Optional[int] = None, entry_id: Optional[int] = None):
        if entry_id is not None:
            message = f"Prix de liste avec ID {entry_id} non trouvé."
        else:
            message = f"Aucun prix pour le produit {product_id} dans la liste {price_list_id}."
        super().__init__(message)
        self.price_list_id = price_list_id
        self.product_id = product_id
        self.entry_id = entry_id


class ProductNotFoundException(PriceListNotFoundError):
    def __init__(self, product_id: int):
        super().__init__(f"Produit avec ID {product_id} non trouvé.")
        self.product_id = product_id


class BusinessPartyNotFoundException(PriceListNotFoundError):
    def __init__(self, business_party_id: int):
        super().__init__(f"Tiers avec ID {business_party_id} non trouvé.")
        self.business_party_id = business_party_id


class AssignmentNotFoundException(PriceListNotFoundError):
    def __init__(self, price_list_id: Optional[int] = None, business_party_id: Optional[int] = None,
                 assignment_id: Optional[int] = None):
        if assignment_id is not None:
            super().__init__(f"Assignation avec ID {assignment_id} non trouvée.")
        else:
            super().__init__(f"Le tiers {business_party_id} n'est pas assigné à la liste {price_list_id}.")
        self.price_list_id = price_list_id
        self.business_party_id = business_party_id
        self.assignment_id = assignment_id


# --- Conflits ---

class ConflictingGuardsException(PriceListConflictError):
    def __init__(self):
        super().__init__("Les options 'only_update_if_higher' et 'only_update_if_lower' sont mutuellement exclusives.")


class DuplicateAssignmentException(PriceListConflictError):
    def __init__(self, price_list_id: int, business_party_id: int):
        super().__init__(f"Le tiers {business_party_id} est déjà assigné à la liste {price_list_id}.")
        self.price_list_id = price_list_id
        self.business_party_id = business_party_id


class DuplicatePriceListCodeException(PriceListConflictError):
    def __init__(self, code: str):
        super().__init__(f"Le code de liste '{code}' existe déjà.")
        self.code = code


# --- Persistance / annulation ---

class PersistenceException(PriceListPersistenceError):
    pass


class OperationCancelledException(PriceListDomainException):
    def __init__(self, operation: str):
        super().__init__(f"Opération annulée: {operation}.")
        self.operation = operation
