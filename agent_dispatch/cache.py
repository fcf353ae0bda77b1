"""Expiring lookup cache scoped to one orchestrator instance."""

from typing import Any, Callable, Dict, Optional, Tuple

from .polling import Clock


class LookupCache:
    """Key/value cache with a per-entry TTL.

    Holds project path resolutions and provider model catalogs. ``clear()``
    drops everything, which tests use to reset state between cases.
    """

    def __init__(self, default_ttl: Optional[float] = None, clock: Optional[Clock] = None):
        self.default_ttl = default_ttl
        self.clock = clock or Clock()
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        value, expires_at = entry
        if expires_at is not None and self.clock.monotonic() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = self.clock.monotonic() + ttl if ttl is not None else None
        self._entries[key] = (value, expires_at)

    def __contains__(self, key: str) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def get_or_set(self, key: str, factory: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        sentinel = object()
        value = self.get(key, sentinel)
        if value is sentinel:
            value = factory()
            self.set(key, value, ttl)
        return value

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
