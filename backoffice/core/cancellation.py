"""
Annulation coopérative des opérations longues.

Les services acceptent un `asyncio.Event` optionnel; lorsqu'il est positionné,
l'opération s'interrompt au prochain point de contrôle et annule sa transaction.
"""
import asyncio
from typing import Optional

from backoffice.price_lists.domain.exceptions import OperationCancelledException


def ensure_not_cancelled(cancel_event: Optional[asyncio.Event], operation: str = "opération") -> None:
    """
    Lève OperationCancelledException si l'annulation a été demandée.

    Args:
        cancel_event: Signal d'annulation fourni par l'appelant (peut être None)
        operation: Nom de l'opération, repris dans le message d'erreur
    """
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledException(operation)
