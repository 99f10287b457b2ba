from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class CheckConfig:
    """Identity and scoring metadata attached to every configured check."""

    id: str
    name: str = ""
    group: str = ""
    score_weight: float = 1.0
    # Per-check deadline; None falls back to the batch timeout.
    timeout_s: float | None = None


@dataclass
class CheckResult:
    """Outcome of exactly one run of a check.

    Identity fields are copied from the CheckConfig by value, so a result
    stays valid after its check is reconfigured or dropped.
    """

    timestamp: datetime
    id: str
    name: str
    group: str
    score_weight: float
    check_type: str
    passed: bool = False
    message: str = ""
    details: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls, config: CheckConfig, check_type: str, timestamp: datetime | None = None
    ) -> "CheckResult":
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            id=config.id,
            name=config.name,
            group=config.group,
            score_weight=config.score_weight,
            check_type=check_type,
        )

    def succeed(self) -> "CheckResult":
        self.passed = True
        self.message = ""
        return self

    def fail(self, message: str) -> "CheckResult":
        self.passed = False
        self.message = message or "Check failed"
        return self

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.astimezone(timezone.utc).isoformat()
        return out
