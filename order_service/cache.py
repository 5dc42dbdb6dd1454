import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

LIST = "list"
DETAIL = "detail"

CACHE_INVALIDATE_EVENT = "cache.invalidate"


class CacheInvalidator(ABC):
    @abstractmethod
    def invalidate(self, resource: str, scope: str, id: Optional[Hashable] = None) -> None:
        ...


class ReadCache(CacheInvalidator):
    """
    Process-local cache of read views.

    Entries are keyed by (resource, scope, key). A list entry's key is
    whatever identifies the query; a detail entry's key is the record id.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, str, Hashable], Any] = {}
        self._lock = threading.Lock()

    def get(self, resource: str, scope: str, key: Hashable = None) -> Optional[Any]:
        with self._lock:
            return self._entries.get((resource, scope, key))

    def set(self, resource: str, scope: str, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[(resource, scope, key)] = value

    def get_or_load(self, resource: str, scope: str, key: Hashable, loader: Callable[[], Any]) -> Any:
        cached = self.get(resource, scope, key)
        if cached is not None:
            return cached
        value = loader()
        self.set(resource, scope, key, value)
        return value

    def invalidate(self, resource: str, scope: str, id: Optional[Hashable] = None) -> None:
        with self._lock:
            stale = [
                k for k in self._entries
                if k[0] == resource and k[1] == scope
                and (scope == LIST or id is None or k[2] == id)
            ]
            for k in stale:
                del self._entries[k]
        logger.debug("Invalidated %d %s/%s entries (id=%s)", len(stale), resource, scope, id)

    def __len__(self):
        with self._lock:
            return len(self._entries)


class BusCacheInvalidator(CacheInvalidator):
    """Broadcasts invalidations so every service instance drops stale reads."""

    def __init__(self, producer, local: Optional[ReadCache] = None):
        self.producer = producer
        self.local = local

    def invalidate(self, resource: str, scope: str, id: Optional[Hashable] = None) -> None:
        if self.local is not None:
            self.local.invalidate(resource, scope, id)
        self.producer.publish(CACHE_INVALIDATE_EVENT, {"resource": resource, "scope": scope, "id": id})
