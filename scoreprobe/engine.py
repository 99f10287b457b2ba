"""Execution engine: runs a batch of checks concurrently under deadlines.

Every submitted check gets its own child RunContext and its own worker from
a bounded thread pool. Each unit reports exactly one CheckResult to the
batch, whether the check passed, failed, raised or timed out. A check that
ignores its context and never returns is reported as timed out once its
deadline plus a grace period has passed, so a batch of N checks always
yields N results.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from scoreprobe.aggregator import collect
from scoreprobe.checks.base import Check
from scoreprobe.checks.results import CheckConfig, CheckResult
from scoreprobe.context import TIMEOUT_PREFIX, RunContext, timeout_message

logger = logging.getLogger(__name__)

DEFAULT_GRACE_S = 5.0


@dataclass
class Unit:
    check: Check
    config: CheckConfig
    ctx: RunContext
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reported: bool = False


class Batch:
    """Result queue plus the fan-in counter for one submission."""

    def __init__(self, grace_s: float = DEFAULT_GRACE_S) -> None:
        self.results: queue.Queue[CheckResult] = queue.Queue()
        self.units: list[Unit] = []
        self.grace_s = grace_s
        self._outstanding = 0
        self._cond = threading.Condition()

    @property
    def size(self) -> int:
        return len(self.units)

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._outstanding

    def add(self, check: Check, ctx: RunContext) -> Unit:
        unit = Unit(check=check, config=check.get_config(), ctx=ctx)
        with self._cond:
            self.units.append(unit)
            self._outstanding += 1
        return unit

    def report(self, unit: Unit, result: CheckResult) -> bool:
        """Record the unit's result. Returns False if it already reported."""
        with self._cond:
            if unit.reported:
                return False
            unit.reported = True
            self._outstanding -= 1
            self.results.put(result)
            self._cond.notify_all()
        return True

    def expire_overdue(self) -> int:
        """Report a timeout for units still running past deadline + grace."""
        now = time.monotonic()
        with self._cond:
            overdue = [
                u
                for u in self.units
                if not u.reported
                and u.ctx.deadline is not None
                and now >= u.ctx.deadline + self.grace_s
            ]

        expired = 0
        for unit in overdue:
            unit.ctx.cancel()
            result = CheckResult.from_config(
                unit.config, unit.check.check_type, timestamp=unit.submitted_at
            )
            result.fail(f"{timeout_message(unit.ctx)}; check did not return")
            if self.report(unit, result):
                expired += 1
                logger.warning(
                    "%s check %s did not return %.1fs after its deadline",
                    unit.check.check_type,
                    unit.config.id,
                    self.grace_s,
                )
        return expired

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every unit has reported; False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._outstanding == 0, timeout)


class ExecutionEngine:
    def __init__(self, max_workers: int | None = None, grace_s: float = DEFAULT_GRACE_S) -> None:
        self.grace_s = grace_s
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="scoreprobe-check"
        )

    def submit(
        self,
        checks: Iterable[Check],
        timeout_s: float,
        parent: RunContext | None = None,
    ) -> Batch:
        parent = parent or RunContext.background()
        batch = Batch(grace_s=self.grace_s)
        for check in checks:
            config = check.get_config()
            if config is None:
                raise ValueError(f"{check.check_type} check submitted before init()")
            # Child deadlines start now, so time spent queued for a worker
            # counts against the check.
            batch.add(check, parent.child(config.timeout_s or timeout_s))

        logger.info("Running %d checks (timeout %.1fs)", batch.size, timeout_s)
        for unit in batch.units:
            self._executor.submit(self._run_unit, batch, unit)
        return batch

    def run(
        self,
        checks: Iterable[Check],
        timeout_s: float,
        parent: RunContext | None = None,
    ) -> list[CheckResult]:
        start = time.perf_counter()
        batch = self.submit(checks, timeout_s, parent)
        results = collect(batch)
        logger.info(
            "Batch of %d checks finished in %.2fs",
            len(results),
            time.perf_counter() - start,
        )
        return results

    def _run_unit(self, batch: Batch, unit: Unit) -> None:
        ctx = unit.ctx
        result = CheckResult.from_config(unit.config, unit.check.check_type)
        try:
            result = unit.check.run(ctx, result)
        except Exception as exc:
            logger.exception("%s check %s raised from run()", unit.check.check_type, unit.config.id)
            result.fail(f"Check raised unexpectedly : {exc}")

        if ctx.done() and not result.message.startswith(TIMEOUT_PREFIX):
            result.fail(timeout_message(ctx))
        # Release the deadline timer and any cancel hooks still registered.
        ctx.cancel()

        if not batch.report(unit, result):
            logger.warning(
                "Discarding late result for %s check %s", unit.check.check_type, unit.config.id
            )

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> ExecutionEngine:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
