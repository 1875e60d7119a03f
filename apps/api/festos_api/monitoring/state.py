"""Provider health state and the stores that hold it.

The in-memory store is per process. The Redis store shares state across
instances keyed by provider name and accepts bounded staleness.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from redis.exceptions import RedisError

HEALTHY = "healthy"
DEGRADED = "degraded"
DOWN = "down"

STATUS_SEVERITY = {HEALTHY: 0, DEGRADED: 1, DOWN: 2}

LATENCY_SMOOTHING = 0.2


class HealthStateUnavailableError(Exception):
    """The shared health state backend could not be read or written."""


class ProviderHealthState:
    """Rolling health of one provider. Mutated only through HealthMonitor.update_metrics."""

    def __init__(
        self,
        provider: str,
        status: str = HEALTHY,
        avg_latency_ms: float = 0.0,
        consecutive_failures: int = 0,
        consecutive_successes: int = 0,
        total_operations: int = 0,
        total_failures: int = 0,
        mean_latency_ms: float = 0.0,
        last_checked: Optional[datetime] = None,
    ):
        self.provider = provider
        self.status = status
        self.avg_latency_ms = avg_latency_ms
        self.consecutive_failures = consecutive_failures
        self.consecutive_successes = consecutive_successes
        self.total_operations = total_operations
        self.total_failures = total_failures
        self.mean_latency_ms = mean_latency_ms
        self.last_checked = last_checked

    @property
    def error_rate(self) -> float:
        if not self.total_operations:
            return 0.0
        return self.total_failures / self.total_operations

    def record(self, latency_ms: float, success: bool, now: datetime):
        """Fold one observation into the counters (status is decided by the monitor)."""
        if self.total_operations == 0:
            self.avg_latency_ms = latency_ms
        else:
            self.avg_latency_ms = (
                LATENCY_SMOOTHING * latency_ms + (1 - LATENCY_SMOOTHING) * self.avg_latency_ms
            )
        self.mean_latency_ms = (
            self.mean_latency_ms * self.total_operations + latency_ms
        ) / (self.total_operations + 1)
        self.total_operations += 1
        if success:
            self.consecutive_successes += 1
            self.consecutive_failures = 0
        else:
            self.total_failures += 1
            self.consecutive_failures += 1
            self.consecutive_successes = 0
        self.last_checked = now

    def to_dict(self) -> dict:
        return {
            "provider": self.provider,
            "status": self.status,
            "avg_latency_ms": self.avg_latency_ms,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "total_operations": self.total_operations,
            "total_failures": self.total_failures,
            "mean_latency_ms": self.mean_latency_ms,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderHealthState":
        data = dict(data)
        if data.get("last_checked"):
            data["last_checked"] = datetime.fromisoformat(data["last_checked"])
        return cls(**data)

    def copy(self) -> "ProviderHealthState":
        return ProviderHealthState.from_dict(self.to_dict())


class HealthStateStore(ABC):
    """Guarded storage for provider health state."""

    @abstractmethod
    def get(self, provider: str) -> ProviderHealthState:
        """Get a snapshot of one provider's state."""
        pass

    @abstractmethod
    def update(
        self, provider: str, mutate: Callable[[ProviderHealthState], None]
    ) -> ProviderHealthState:
        """Apply ``mutate`` atomically and return a snapshot of the result."""
        pass


class InMemoryHealthStateStore(HealthStateStore):
    """Process-local state guarded by a mutex."""

    def __init__(self):
        self._states: dict[str, ProviderHealthState] = {}
        self._lock = threading.Lock()

    def get(self, provider: str) -> ProviderHealthState:
        with self._lock:
            state = self._states.get(provider) or ProviderHealthState(provider)
            return state.copy()

    def update(self, provider, mutate):
        with self._lock:
            state = self._states.setdefault(provider, ProviderHealthState(provider))
            mutate(state)
            return state.copy()


class RedisHealthStateStore(HealthStateStore):
    """State shared across instances in Redis, one key per provider."""

    def __init__(self, redis_client, prefix: str = "festos:health", lock_timeout: float = 5.0):
        self.redis = redis_client
        self.prefix = prefix
        self.lock_timeout = lock_timeout

    def _key(self, provider: str) -> str:
        return f"{self.prefix}:{provider}"

    def _load(self, provider: str) -> ProviderHealthState:
        raw = self.redis.get(self._key(provider))
        if not raw:
            return ProviderHealthState(provider)
        return ProviderHealthState.from_dict(json.loads(raw))

    def get(self, provider: str) -> ProviderHealthState:
        try:
            return self._load(provider)
        except RedisError as e:
            raise HealthStateUnavailableError(f"Cannot read health state for {provider}: {e}") from e

    def update(self, provider, mutate):
        try:
            with self.redis.lock(f"{self._key(provider)}:lock", timeout=self.lock_timeout):
                state = self._load(provider)
                mutate(state)
                self.redis.set(self._key(provider), json.dumps(state.to_dict()))
                return state.copy()
        except RedisError as e:
            raise HealthStateUnavailableError(f"Cannot update health state for {provider}: {e}") from e
