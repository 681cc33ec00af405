import logging
import os
from typing import Any, Callable

from encounter_tracker.infrastructure.content.content_cache import FileContentCache
from encounter_tracker.infrastructure.content.open5e_client import Open5eClient


logger = logging.getLogger(__name__)


def _is_truthy(value: str | None, *, default: str = "0") -> bool:
    normalized = str(value if value is not None else default).strip().lower()
    return normalized in {"1", "true", "yes"}


class CachedMonsterClient:
    """Fronts a monster provider with a file cache; serves stale entries when the provider fails."""

    def __init__(self, provider, cache: FileContentCache, cache_ttl_seconds: int = 86400) -> None:
        self.provider = provider
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    @staticmethod
    def _cache_key(method_name: str, **kwargs: Any) -> str:
        bits = [method_name] + [f"{key}={kwargs[key]}" for key in sorted(kwargs)]
        return "monsters:" + "|".join(bits)

    def _fetch(self, method_name: str, fetch: Callable[[], dict[str, Any]], **kwargs: Any) -> dict[str, Any]:
        cache_key = self._cache_key(method_name, **kwargs)
        cached = self.cache.get(cache_key, ttl_seconds=self.cache_ttl_seconds)
        if cached is not None:
            return cached
        try:
            payload = fetch()
        except Exception:
            stale = self.cache.get(cache_key, ttl_seconds=self.cache_ttl_seconds, allow_stale=True)
            if stale is None:
                raise
            logger.warning("Serving stale monster payload", extra={"cache_key": cache_key})
            return stale
        try:
            self.cache.set(cache_key, payload)
        except OSError:
            logger.warning("Could not write monster cache entry", extra={"cache_key": cache_key})
        return payload

    def list_monsters(self, page: int = 1, search: str | None = None) -> dict:
        return self._fetch(
            "list_monsters",
            lambda: self.provider.list_monsters(page=page, search=search),
            page=page,
            search=search or "",
        )

    def get_monster(self, slug: str) -> dict:
        return self._fetch("get_monster", lambda: self.provider.get_monster(slug), slug=slug)

    def status(self) -> dict[str, Any]:
        provider_status = getattr(self.provider, "status", None)
        return provider_status() if callable(provider_status) else {}

    def close(self) -> None:
        self.provider.close()


def create_monster_client() -> CachedMonsterClient | None:
    if not _is_truthy(os.getenv("TRACKER_OPEN5E_ENABLED"), default="0"):
        return None
    provider = Open5eClient(
        base_url=os.getenv("TRACKER_OPEN5E_BASE_URL", Open5eClient.BASE_URL),
        timeout=float(os.getenv("TRACKER_CONTENT_TIMEOUT_S", "10")),
        retries=int(os.getenv("TRACKER_CONTENT_RETRIES", "2")),
        backoff_seconds=float(os.getenv("TRACKER_CONTENT_BACKOFF_S", "0.2")),
    )
    cache = FileContentCache(os.getenv("TRACKER_CONTENT_CACHE_DIR", ".tracker_cache/content"))
    return CachedMonsterClient(
        provider,
        cache,
        cache_ttl_seconds=int(os.getenv("TRACKER_CONTENT_CACHE_TTL_S", "86400")),
    )
