import os
import sys
import tempfile
from pathlib import Path
import unittest
from unittest import mock

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from encounter_tracker.infrastructure.content.cached_monster_client import CachedMonsterClient
from encounter_tracker.infrastructure.content.content_cache import FileContentCache
from encounter_tracker.infrastructure.content.open5e_client import Open5eClient
from encounter_tracker.infrastructure.content.resilient_http import CircuitBreaker, CircuitOpenError, fetch_json


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class _AlwaysTimeoutClient:
    def __init__(self) -> None:
        self.calls = 0

    def get(self, path, params=None):
        self.calls += 1
        raise httpx.TimeoutException("timeout")


class _ScriptedClient:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.calls = 0

    def get(self, path, params=None):
        self.calls += 1
        scripted = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        status, headers = scripted if isinstance(scripted, tuple) else (scripted, {})
        request = httpx.Request("GET", f"https://api.open5e.invalid{path}")
        return httpx.Response(status, json={"results": [{"slug": "goblin"}]}, headers=headers, request=request)


class FetchJsonTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.breaker = CircuitBreaker("open5e", failure_threshold=3, reset_seconds=60, clock=self.clock)

    def test_returns_json_payload_on_success(self) -> None:
        client = _ScriptedClient(200)

        payload = fetch_json(client, "/monsters/", breaker=self.breaker)

        self.assertEqual("goblin", payload["results"][0]["slug"])
        self.assertEqual(1, client.calls)

    def test_retries_outage_with_exponential_backoff(self) -> None:
        client = _ScriptedClient(503, 502, 200)
        delays = []

        payload = fetch_json(
            client, "/monsters/", breaker=self.breaker, retries=2, backoff_seconds=0.5, sleep=delays.append
        )

        self.assertEqual("goblin", payload["results"][0]["slug"])
        self.assertEqual([0.5, 1.0], delays)
        self.assertEqual("closed", self.breaker.state)
        self.assertEqual(0, self.breaker.failures)

    def test_throttling_waits_for_retry_after_capped(self) -> None:
        client = _ScriptedClient((429, {"Retry-After": "4"}), (429, {"Retry-After": "3600"}), 200)
        delays = []

        fetch_json(client, "/monsters/", breaker=self.breaker, retries=2, backoff_seconds=0.1, sleep=delays.append)

        self.assertEqual([4.0, 30.0], delays)

    def test_request_timeout_status_is_final(self) -> None:
        client = _ScriptedClient(408)

        with self.assertRaises(httpx.HTTPStatusError):
            fetch_json(client, "/monsters/", breaker=self.breaker, retries=3, sleep=lambda _: None)
        self.assertEqual(1, client.calls)
        self.assertEqual(0, self.breaker.failures)

    def test_missing_monster_is_not_retried(self) -> None:
        client = _ScriptedClient(404)

        with self.assertRaises(httpx.HTTPStatusError):
            fetch_json(client, "/monsters/missing/", breaker=self.breaker, retries=3, sleep=lambda _: None)
        self.assertEqual(1, client.calls)


class CircuitBreakerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = _Clock()
        self.breaker = CircuitBreaker("open5e", failure_threshold=3, reset_seconds=60, clock=self.clock)

    def _fail_once(self, client) -> None:
        with self.assertRaises(httpx.TimeoutException):
            fetch_json(client, "/monsters/", breaker=self.breaker)

    def test_opens_after_threshold_and_short_circuits(self) -> None:
        client = _AlwaysTimeoutClient()
        for _ in range(3):
            self._fail_once(client)

        with self.assertRaises(CircuitOpenError) as ctx:
            fetch_json(client, "/monsters/", breaker=self.breaker)

        self.assertEqual(3, client.calls)
        self.assertEqual(60, ctx.exception.retry_in_seconds)
        self.assertEqual(
            {"source": "open5e", "circuit": "open", "consecutive_failures": 3, "retry_in_seconds": 60.0},
            self.breaker.snapshot(),
        )

    def test_half_open_trial_reopens_on_failure_and_closes_on_success(self) -> None:
        client = _AlwaysTimeoutClient()
        for _ in range(3):
            self._fail_once(client)
        self.clock.now += 61
        self.assertEqual("half_open", self.breaker.state)

        self._fail_once(client)
        self.assertEqual("open", self.breaker.state)

        self.clock.now += 61
        fetch_json(_ScriptedClient(200), "/monsters/", breaker=self.breaker)
        self.assertEqual("closed", self.breaker.state)
        self.assertEqual(0, self.breaker.failures)

    def test_disabled_breaker_keeps_calling(self) -> None:
        env = {"TRACKER_HTTP_CIRCUIT_BREAKER_ENABLED": "0", "TRACKER_HTTP_CIRCUIT_FAILURE_THRESHOLD": "1"}
        with mock.patch.dict(os.environ, env, clear=False):
            self.breaker = CircuitBreaker.from_env("open5e")
        client = _AlwaysTimeoutClient()

        for _ in range(3):
            self._fail_once(client)

        self.assertEqual(3, client.calls)
        self.assertEqual("disabled", self.breaker.snapshot()["circuit"])


class Open5eClientStatusTests(unittest.TestCase):
    def test_cached_client_reports_provider_breaker(self) -> None:
        breaker = CircuitBreaker("open5e", failure_threshold=1, reset_seconds=60, clock=_Clock())
        provider = Open5eClient(http_client=_AlwaysTimeoutClient(), retries=0, breaker=breaker)
        with self.assertRaises(httpx.TimeoutException):
            provider.get_monster("goblin")

        with tempfile.TemporaryDirectory() as tmp:
            status = CachedMonsterClient(provider, FileContentCache(tmp)).status()

        self.assertEqual("open", status["circuit"])
        self.assertEqual(1, status["consecutive_failures"])


if __name__ == "__main__":
    unittest.main()
