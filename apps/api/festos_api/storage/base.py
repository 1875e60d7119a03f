"""Storage provider interface shared by the three storage layers."""

import time
from abc import ABC, abstractmethod
from typing import Optional

from festos_api.utils.clock import utcnow

PROVIDER_DATABASE = "database"
PROVIDER_LEDGER = "ledger"
PROVIDER_CONTENT = "content"

PROVIDERS = (PROVIDER_DATABASE, PROVIDER_LEDGER, PROVIDER_CONTENT)


class StorageProvider(ABC):
    """Capability interface: health_check, read and a provider-specific write."""

    name: str = ""
    health_cache_seconds: float = 0.0

    def __init__(self):
        self._health_cache: Optional[tuple[float, dict]] = None

    @abstractmethod
    def _probe(self) -> dict:
        """Run one connectivity probe. Raise on failure, return details on success."""
        pass

    @abstractmethod
    def read(self, query: dict) -> dict:
        """Read records. Returns {"records": [...], "total": int}."""
        pass

    @abstractmethod
    def get_config(self) -> dict:
        """Get provider configuration with secrets redacted."""
        pass

    def health_check(self) -> dict:
        """
        Check provider health.

        Returns:
            {"ok": bool, "latency_ms": float, "checked_at": datetime,
             "details": dict, "error": str | None}

        Results are cached for ``health_cache_seconds``. Never raises.
        """
        now = time.monotonic()
        if self._health_cache and now - self._health_cache[0] < self.health_cache_seconds:
            return self._health_cache[1]

        start = time.perf_counter()
        try:
            details = self._probe() or {}
            result = {"ok": True, "details": details, "error": None}
        except Exception as e:
            result = {"ok": False, "details": {}, "error": str(e)}
        result["latency_ms"] = (time.perf_counter() - start) * 1000
        result["checked_at"] = utcnow()

        self._health_cache = (now, result)
        return result
