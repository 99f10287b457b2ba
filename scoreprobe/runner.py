from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Sequence

from scoreprobe.aggregator import summarize
from scoreprobe.checks.base import Check
from scoreprobe.checks.results import CheckResult
from scoreprobe.config import settings
from scoreprobe.engine import ExecutionEngine
from scoreprobe.registry import default_registry, load_checks

logger = logging.getLogger(__name__)


def _log_result(res: CheckResult) -> None:
    if res.passed:
        logger.info("[PASS] %s (%s)", res.id, res.check_type)
    else:
        logger.warning("[FAIL] %s (%s): %s", res.id, res.check_type, res.message)


def run_once(
    engine: ExecutionEngine, checks: Sequence[Check], timeout_s: float
) -> list[CheckResult]:
    results = engine.run(checks, timeout_s=timeout_s)
    for res in results:
        _log_result(res)

    summary = summarize(results)
    logger.info(
        "%d/%d checks passed (weight %.1f/%.1f)",
        summary["passed"],
        summary["total"],
        summary["passed_weight"],
        summary["total_weight"],
    )
    return results


def loop_forever(
    engine: ExecutionEngine, checks: Sequence[Check], interval_s: int, timeout_s: float
) -> None:
    while True:
        start = time.perf_counter()
        run_once(engine, checks, timeout_s)
        elapsed = time.perf_counter() - start
        sleep_s = max(0.0, interval_s - elapsed)
        time.sleep(sleep_s)


def main() -> int:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    checks = load_checks(Path(settings.CHECKS_PATH), default_registry())
    logger.info("Loaded %d checks from %s", len(checks), settings.CHECKS_PATH)

    with ExecutionEngine(max_workers=settings.MAX_WORKERS, grace_s=settings.GRACE_S) as engine:
        try:
            loop_forever(engine, checks, settings.INTERVAL_S, settings.TIMEOUT_S)
        except KeyboardInterrupt:
            logger.info("Stopping")
    return 0
