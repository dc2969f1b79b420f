"""Resilient call envelope - bounded retries, provider fallback, health tracking.

Every external call in the pipeline goes through ``ResilientCallEnvelope``:
- Retries only classified-retryable errors (rate limit, 5xx, timeout, connection reset)
- Exponential backoff with jitter, clamped to [base, max]
- Quota errors on the primary route mark it unhealthy and fail over once
- One ``CallRecord`` per attempt, the only way callers observe retry behaviour
"""

import asyncio
import inspect
import random
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from src.contracts.errors import PipelineCancelledError, QuotaExhaustedError
from src.contracts.schemas import CallOutcome, CallRecord, ErrorClass, RetryConfig

T = TypeVar("T")

_SERVER_STATUS = re.compile(r"\b(500|502|503|504)\b")


# =============================================================================
# Error classification
# =============================================================================


def classify_error(error: BaseException) -> ErrorClass:
    """Map an exception to an ErrorClass by type, status code and message."""
    if isinstance(error, QuotaExhaustedError):
        return ErrorClass.QUOTA
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorClass.TIMEOUT
    if isinstance(error, (ConnectionError, httpx.TransportError)):
        return ErrorClass.CONNECTION

    status = getattr(error, "status", None)
    if not isinstance(status, int):
        status = getattr(error, "status_code", None)
    msg = str(error).lower()

    if "resource_exhausted" in msg or "quota" in msg:
        return ErrorClass.QUOTA
    if status == 429 or "429" in msg or "rate limit" in msg or "too many requests" in msg:
        return ErrorClass.RATE_LIMIT
    if (isinstance(status, int) and 500 <= status < 600) or _SERVER_STATUS.search(msg):
        return ErrorClass.SERVER
    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if any(
        pattern in msg
        for pattern in ("econnreset", "connection reset", "network", "temporarily unavailable", "econnrefused")
    ):
        return ErrorClass.CONNECTION
    return ErrorClass.FATAL


def compute_delay(attempt: int, config: RetryConfig, rng: random.Random | None = None) -> float:
    """Backoff in milliseconds before retrying after ``attempt`` (1-based)."""
    rng = rng or random
    base = config.base_delay_ms * 2 ** (attempt - 1)
    jitter = rng.uniform(-config.jitter_factor, config.jitter_factor)
    return max(config.base_delay_ms, min(config.max_delay_ms, base * (1 + jitter)))


# =============================================================================
# Provider health
# =============================================================================


@dataclass
class ProviderHealth:
    """Health of one route."""

    route: str
    consecutive_failures: int = 0
    quota_exhausted: bool = False
    unhealthy_until: float | None = None
    last_error_class: ErrorClass | None = None


class ProviderHealthRegistry:
    """Per-route health, shared by concurrent workers and guarded by a lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._health: dict[str, ProviderHealth] = {}
        self._lock = asyncio.Lock()

    def _entry(self, route: str) -> ProviderHealth:
        if route not in self._health:
            self._health[route] = ProviderHealth(route=route)
        return self._health[route]

    def _auto_clear(self, entry: ProviderHealth) -> None:
        if entry.unhealthy_until is not None and self._clock() >= entry.unhealthy_until:
            print(f"[Resilience] Route '{entry.route}' recovered after cooldown")
            entry.quota_exhausted = False
            entry.unhealthy_until = None

    async def is_healthy(self, route: str) -> bool:
        async with self._lock:
            entry = self._entry(route)
            self._auto_clear(entry)
            return not entry.quota_exhausted

    async def record_success(self, route: str) -> None:
        async with self._lock:
            entry = self._entry(route)
            entry.consecutive_failures = 0
            entry.quota_exhausted = False
            entry.unhealthy_until = None
            entry.last_error_class = None

    async def record_failure(self, route: str, error_class: ErrorClass) -> None:
        async with self._lock:
            entry = self._entry(route)
            entry.consecutive_failures += 1
            entry.last_error_class = error_class

    async def mark_quota_exhausted(self, route: str, cooldown_seconds: float) -> None:
        async with self._lock:
            entry = self._entry(route)
            entry.quota_exhausted = True
            entry.unhealthy_until = self._clock() + cooldown_seconds
            entry.last_error_class = ErrorClass.QUOTA
        print(f"[WARN] Route '{route}' quota exhausted; unhealthy for {cooldown_seconds:.0f}s")

    def snapshot(self) -> dict[str, ProviderHealth]:
        """Copy of the current health map."""
        return {route: replace(entry) for route, entry in self._health.items()}


# =============================================================================
# Envelope
# =============================================================================


class ResilientCallEnvelope:
    """Wraps async operations with retry, timeout, fallback and telemetry.

    Usage:
        envelope = ResilientCallEnvelope(RetryConfig(max_attempts=3))
        result = await envelope.execute(lambda: client.generate(prompt), operation_name="audit")
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        health: ProviderHealthRegistry | None = None,
        *,
        on_record: Callable[[CallRecord], Any] | None = None,
        cancel_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ):
        """Initialize the envelope.

        Args:
            config: Default retry settings
            health: Provider health registry (a private one is created if omitted)
            on_record: Sync or async callback receiving every CallRecord
            cancel_event: When set, no new attempt is started
            sleep: Sleep function (injectable for tests)
            rng: Random source for jitter
        """
        self.config = config or RetryConfig()
        self.health = health or ProviderHealthRegistry()
        self.on_record = on_record
        self.cancel_event = cancel_event
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self.records: list[CallRecord] = []

    def check_cancelled(self, operation_name: str | None = None) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelledError(operation_name)

    async def _emit(self, record: CallRecord) -> None:
        self.records.append(record)
        if self.on_record is None:
            return
        try:
            if inspect.iscoroutinefunction(self.on_record):
                await self.on_record(record)
            else:
                self.on_record(record)
        except Exception as e:
            print(f"[WARN] Error in call record callback: {e}")

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str = "call",
        route: str = "default",
        config: RetryConfig | None = None,
        fallback_available: bool = False,
    ) -> T:
        """Run ``operation`` with bounded retries.

        Non-retryable errors propagate after exactly one attempt. When
        ``max_attempts`` is exhausted the last error is re-raised.
        """
        cfg = config or self.config

        for attempt in range(1, cfg.max_attempts + 1):
            self.check_cancelled(operation_name)
            started = time.perf_counter()
            try:
                result = await asyncio.wait_for(operation(), timeout=cfg.timeout_seconds)
            except PipelineCancelledError:
                raise
            except Exception as e:
                latency_ms = (time.perf_counter() - started) * 1000
                error_class = classify_error(e)
                await self.health.record_failure(route, error_class)

                if attempt >= cfg.max_attempts or not error_class.retryable:
                    outcome = (
                        CallOutcome.FALLBACK
                        if fallback_available and error_class is ErrorClass.QUOTA
                        else CallOutcome.FAILURE
                    )
                    await self._emit(CallRecord(
                        route=route,
                        operation=operation_name,
                        attempt=attempt,
                        latency_ms=latency_ms,
                        outcome=outcome,
                        error_class=error_class,
                        error=str(e)[:300],
                    ))
                    raise

                delay_ms = compute_delay(attempt, cfg, self._rng)
                await self._emit(CallRecord(
                    route=route,
                    operation=operation_name,
                    attempt=attempt,
                    latency_ms=latency_ms,
                    outcome=CallOutcome.RETRY,
                    error_class=error_class,
                    error=str(e)[:300],
                    delay_ms=delay_ms,
                ))
                print(
                    f"[Retry] route={route} op={operation_name} attempt={attempt}/{cfg.max_attempts} "
                    f"class={error_class.value} delayMs={delay_ms:.0f}"
                )
                await self._sleep(delay_ms / 1000)
                continue

            await self._emit(CallRecord(
                route=route,
                operation=operation_name,
                attempt=attempt,
                latency_ms=(time.perf_counter() - started) * 1000,
                outcome=CallOutcome.SUCCESS,
            ))
            await self.health.record_success(route)
            return result

        # max_attempts >= 1, the loop always returns or raises
        raise RuntimeError("unreachable")

    async def execute_with_fallback(
        self,
        operation: Callable[[str], Awaitable[T]],
        *,
        primary: str,
        secondary: str | None,
        operation_name: str = "call",
        config: RetryConfig | None = None,
    ) -> T:
        """Run ``operation(route)`` on the primary route, failing over once on quota errors.

        A primary route already marked quota-exhausted is skipped until its
        cooldown expires.
        """
        cfg = config or self.config
        can_fallback = bool(secondary) and secondary != primary

        if can_fallback and not await self.health.is_healthy(primary):
            self.check_cancelled(operation_name)
            await self._emit(CallRecord(
                route=primary,
                operation=operation_name,
                attempt=1,
                outcome=CallOutcome.FALLBACK,
                error_class=ErrorClass.QUOTA,
                error="route unhealthy, skipped",
            ))
            return await self.execute(
                lambda: operation(secondary),
                operation_name=operation_name,
                route=secondary,
                config=cfg,
            )

        try:
            return await self.execute(
                lambda: operation(primary),
                operation_name=operation_name,
                route=primary,
                config=cfg,
                fallback_available=can_fallback,
            )
        except PipelineCancelledError:
            raise
        except Exception as e:
            if not can_fallback or classify_error(e) is not ErrorClass.QUOTA:
                raise
            await self.health.mark_quota_exhausted(primary, cfg.quota_cooldown_seconds)
            print(f"[Resilience] Falling back from '{primary}' to '{secondary}' for {operation_name}")

        return await self.execute(
            lambda: operation(secondary),
            operation_name=operation_name,
            route=secondary,
            config=cfg,
        )
