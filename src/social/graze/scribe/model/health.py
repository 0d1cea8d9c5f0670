import asyncio


class HealthGauge:
    """
    Failure-burst gauge backing the readiness probe.

    Every resolution failure that escapes the pipeline (a retryable error, not a soft-absent result) adds to the
    gauge, and a background task drains it one step per tick. While the gauge sits above its threshold the worker
    reports itself as not ready, which lets the orchestrator stop routing intake traffic to a worker whose upstream
    calls are failing en masse.
    """

    def __init__(self, value: int = 0, failure_threshold: int = 100) -> None:
        self._value = value
        self._failure_threshold = failure_threshold
        self._lock = asyncio.Lock()

    @property
    def value(self) -> int:
        return self._value

    async def record_failure(self, weight: int = 1) -> int:
        async with self._lock:
            self._value += int(weight)
            return self._value

    async def drain(self) -> None:
        async with self._lock:
            self._value = max(self._value - 1, 0)

    async def is_healthy(self) -> bool:
        async with self._lock:
            return self._value <= self._failure_threshold
