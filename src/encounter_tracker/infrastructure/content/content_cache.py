import json
import logging
import os
import shutil
import time
from hashlib import sha1
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)

DEFAULT_CONTENT_DATA_VERSION = "1.0.0"
_MANIFEST_FILENAME = "manifest.json"


class FileContentCache:
    """JSON payload cache on disk, wiped whenever the configured data version changes."""

    def __init__(self, root_dir: str | Path, *, data_version: str | None = None, clock=time.time) -> None:
        self.root_dir = Path(root_dir)
        configured_version = str(
            data_version or os.getenv("TRACKER_CONTENT_DATA_VERSION", DEFAULT_CONTENT_DATA_VERSION)
        ).strip()
        self.data_version = configured_version or DEFAULT_CONTENT_DATA_VERSION
        self._clock = clock
        self._manifest_path = self.root_dir / _MANIFEST_FILENAME
        self._ensure_cache_version()

    def _ensure_cache_version(self) -> None:
        manifest_version = self._read_json(self._manifest_path).get("data_version")
        if manifest_version == self.data_version and self.root_dir.exists():
            return

        if self.root_dir.exists():
            logger.info("Discarding content cache", extra={"from_version": manifest_version, "to_version": self.data_version})
            shutil.rmtree(self.root_dir, ignore_errors=True)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._write_json(self._manifest_path, {"data_version": self.data_version, "updated_at": int(self._clock())})

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
        return payload if isinstance(payload, dict) else {}

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)

    def _path_for_key(self, cache_key: str) -> Path:
        key_hash = sha1(cache_key.encode("utf-8")).hexdigest()
        return self.root_dir / f"{key_hash}.json"

    def set(self, cache_key: str, payload: dict[str, Any]) -> None:
        self._write_json(self._path_for_key(cache_key), {"stored_at": int(self._clock()), "payload": payload})

    def get(
        self,
        cache_key: str,
        *,
        ttl_seconds: int | None,
        allow_stale: bool = False,
    ) -> dict[str, Any] | None:
        envelope = self._read_json(self._path_for_key(cache_key))
        payload = envelope.get("payload")
        if not isinstance(payload, dict):
            return None
        if allow_stale or ttl_seconds is None:
            return payload
        try:
            age_seconds = int(self._clock()) - int(envelope.get("stored_at"))
        except (TypeError, ValueError):
            return None
        if age_seconds <= max(0, int(ttl_seconds)):
            return payload
        return None
