import httpx

from encounter_tracker.infrastructure.content.resilient_http import CircuitBreaker, fetch_json


class Open5eClient:
    """Open5e monster lookups (synchronous, small surface)."""

    BASE_URL = "https://api.open5e.com"

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        retries: int = 2,
        backoff_seconds: float = 0.2,
        http_client: httpx.Client | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._retries = retries
        self._backoff_seconds = backoff_seconds
        self.client = http_client or httpx.Client(base_url=base_url, timeout=timeout)
        self.breaker = breaker or CircuitBreaker.from_env("open5e")

    def _get(self, path: str, params: dict | None = None) -> dict:
        return fetch_json(
            self.client,
            path,
            breaker=self.breaker,
            params=params,
            retries=self._retries,
            backoff_seconds=self._backoff_seconds,
        )

    def list_monsters(self, page: int = 1, search: str | None = None) -> dict:
        params: dict = {"page": page}
        if search:
            params["search"] = search
        return self._get("/monsters/", params)

    def get_monster(self, slug: str) -> dict:
        return self._get(f"/monsters/{slug}/")

    def status(self) -> dict:
        return self.breaker.snapshot()

    def close(self) -> None:
        self.client.close()
