from __future__ import annotations

import queue
from typing import TYPE_CHECKING, Any, Iterable

from scoreprobe.checks.results import CheckResult

if TYPE_CHECKING:
    from scoreprobe.engine import Batch

POLL_INTERVAL_S = 0.1


def collect(batch: "Batch", poll_s: float = POLL_INTERVAL_S) -> list[CheckResult]:
    """Drain a batch until every unit has reported.

    Results come back in completion order; ordering across checks carries no
    meaning. Units stuck past their deadline are expired while waiting.
    """
    results: list[CheckResult] = []
    while len(results) < batch.size:
        try:
            results.append(batch.results.get(timeout=poll_s))
        except queue.Empty:
            batch.expire_overdue()
    return results


def summarize(results: Iterable[CheckResult]) -> dict[str, Any]:
    results = list(results)
    passed = [r for r in results if r.passed]
    failed = [r for r in results if not r.passed]
    return {
        "total": len(results),
        "passed": len(passed),
        "failed": len(failed),
        "passed_weight": sum(r.score_weight for r in passed),
        "total_weight": sum(r.score_weight for r in results),
        "failed_checks": [r.id for r in failed],
    }
