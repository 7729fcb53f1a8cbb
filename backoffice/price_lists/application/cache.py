"""
Cache à durée de vie courte des prix résolus.

Clé: tous les champs de la requête de résolution. Toute écriture sur les
listes, les prix ou les assignations invalide les entrées concernées.
"""
import logging
import time
from collections import OrderedDict
from typing import Hashable, Optional, Tuple

from backoffice.price_lists.application.schemas import PriceResolutionRequest, PriceResolutionResult
from backoffice.price_lists.config import price_list_settings

logger = logging.getLogger(__name__)


class PriceResolutionCache:

    def __init__(self, ttl_seconds: int, max_entries: int, enabled: bool = True):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._entries: "OrderedDict[Hashable, Tuple[float, int, PriceResolutionResult]]" = OrderedDict()

    @staticmethod
    def make_key(request: PriceResolutionRequest) -> Hashable:
        return tuple(sorted(request.model_dump(mode="json").items()))

    def get(self, request: PriceResolutionRequest) -> Optional[PriceResolutionResult]:
        if not self.enabled:
            return None
        key = self.make_key(request)
        cached = self._entries.get(key)
        if cached is None:
            return None
        expires_at, _, result = cached
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return result.model_copy(deep=True)

    def set(self, request: PriceResolutionRequest, result: PriceResolutionResult) -> None:
        if not self.enabled:
            return
        key = self.make_key(request)
        self._entries[key] = (time.monotonic() + self.ttl_seconds, request.product_id, result.model_copy(deep=True))
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate_product(self, product_id: int) -> None:
        stale = [k for k, (_, pid, _) in self._entries.items() if pid == product_id]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"[PriceResolutionCache] {len(stale)} entrée(s) invalidée(s) pour le produit {product_id}")

    def clear(self) -> None:
        if self._entries:
            logger.debug(f"[PriceResolutionCache] Invalidation complète ({len(self._entries)} entrées)")
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


price_resolution_cache = PriceResolutionCache(
    ttl_seconds=price_list_settings.RESOLUTION_CACHE_TTL_SECONDS,
    max_entries=price_list_settings.RESOLUTION_CACHE_MAX_ENTRIES,
    enabled=price_list_settings.RESOLUTION_CACHE_ENABLED,
)
