from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Literal

from loguru import logger

MetricStatus = Literal["success", "error", "timeout"]
BudgetResult = Literal["pass", "warning", "error"]
MetricSink = Callable[[str, float, str, dict[str, Any] | None], Awaitable[None]]


@dataclass
class PerformanceMetric:
    operation_id: str
    operation: str
    start_time: float
    end_time: float | None = None
    duration_ms: float | None = None
    status: MetricStatus | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PerformanceBudget:
    operation: str
    warning_ms: float
    error_ms: float


DEFAULT_BUDGETS = (
    PerformanceBudget("post_generation", 30_000, 60_000),
    PerformanceBudget("research", 10_000, 30_000),
    PerformanceBudget("analysis", 5_000, 15_000),
    PerformanceBudget("strategy", 5_000, 15_000),
    PerformanceBudget("api_request", 2_000, 5_000),
)


class PerformanceBudgetMonitor:
    def __init__(self, budgets: tuple[PerformanceBudget, ...] = DEFAULT_BUDGETS):
        self._budgets: dict[str, PerformanceBudget] = {b.operation: b for b in budgets}

    def check(self, operation: str, duration_ms: float) -> BudgetResult:
        budget = self._budgets.get(operation)
        if budget is None:
            return "pass"
        if duration_ms > budget.error_ms:
            logger.warning(
                f"Performance budget exceeded (error): {operation} took {duration_ms:.0f}ms > {budget.error_ms:.0f}ms"
            )
            return "error"
        if duration_ms > budget.warning_ms:
            logger.warning(
                f"Performance budget exceeded (warning): {operation} took {duration_ms:.0f}ms > {budget.warning_ms:.0f}ms"
            )
            return "warning"
        return "pass"


class PerformanceMonitor:
    """Times named operations and forwards finished samples to an optional sink."""

    def __init__(
        self,
        sink: MetricSink | None = None,
        budgets: PerformanceBudgetMonitor | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._sink = sink
        self._budgets = budgets or PerformanceBudgetMonitor()
        self._clock = clock
        self._active: dict[str, PerformanceMetric] = {}

    def start(self, operation_id: str, operation: str, metadata: dict[str, Any] | None = None) -> None:
        self._active[operation_id] = PerformanceMetric(
            operation_id=operation_id,
            operation=operation,
            start_time=self._clock(),
            metadata=dict(metadata or {}),
        )
        logger.debug(f"Performance monitoring started: {operation} ({operation_id})")

    async def end(self, operation_id: str, status: MetricStatus = "success") -> float:
        metric = self._active.pop(operation_id, None)
        if metric is None:
            logger.warning(f"Performance metric not found: {operation_id}")
            return 0.0

        metric.end_time = self._clock()
        metric.duration_ms = (metric.end_time - metric.start_time) * 1000
        metric.status = status
        logger.info(
            f"Performance metric recorded: {metric.operation} {metric.duration_ms:.0f}ms status={status}"
        )
        self._budgets.check(metric.operation, metric.duration_ms)

        if self._sink is not None:
            try:
                await self._sink(metric.operation, round(metric.duration_ms), status, metric.metadata or None)
            except Exception as exc:
                logger.error(f"Failed to store performance metric {operation_id}: {exc}")
        return metric.duration_ms

    def current(self) -> list[PerformanceMetric]:
        return list(self._active.values())

    @asynccontextmanager
    async def measure(self, operation: str, **metadata: Any) -> AsyncIterator[str]:
        operation_id = f"{operation}_{uuid.uuid4().hex[:12]}"
        self.start(operation_id, operation, metadata)
        try:
            yield operation_id
        except BaseException:
            await self.end(operation_id, "error")
            raise
        await self.end(operation_id, "success")


def track_web_vitals(vitals: dict[str, Any]) -> None:
    reported = {k: v for k, v in vitals.items() if v is not None}
    logger.info(f"Web vitals tracked: {reported}")
