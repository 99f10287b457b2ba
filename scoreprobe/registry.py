from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Mapping

import yaml

from scoreprobe.checks.base import Check
from scoreprobe.checks.http_check import HttpCheck
from scoreprobe.checks.imap_check import ImapCheck
from scoreprobe.checks.results import CheckConfig
from scoreprobe.checks.tcp_check import TcpCheck
from scoreprobe.checks.winrm_check import WinrmCheck
from scoreprobe.errors import UnknownCheckTypeError
from scoreprobe.models import CheckEntry, CheckFile

CheckFactory = Callable[[], Check]


class CheckRegistry:
    """Maps a check type name to a constructor for its probe."""

    def __init__(self, factories: Mapping[str, CheckFactory] | None = None) -> None:
        self._factories: dict[str, CheckFactory] = {}
        for name, factory in (factories or {}).items():
            self.register(name, factory)

    def register(self, name: str, factory: CheckFactory) -> None:
        if name in self._factories:
            raise ValueError(f"Check type already registered: {name}")
        self._factories[name] = factory

    def create(self, name: str) -> Check:
        try:
            factory = self._factories[name]
        except KeyError:
            raise UnknownCheckTypeError(name) from None
        return factory()

    def types(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def default_registry() -> CheckRegistry:
    return CheckRegistry(
        {
            HttpCheck.check_type: HttpCheck,
            ImapCheck.check_type: ImapCheck,
            TcpCheck.check_type: TcpCheck,
            WinrmCheck.check_type: WinrmCheck,
        }
    )


def load_check_file(path: Path) -> CheckFile:
    if not path.exists():
        raise FileNotFoundError(f"Missing check file at {path}")

    data = yaml.safe_load(path.read_text()) or {}
    check_file = CheckFile.model_validate(data)

    # Ensure unique IDs
    seen = set()
    for c in check_file.checks:
        if c.id in seen:
            raise ValueError(f"Duplicate check id: {c.id}")
        seen.add(c.id)

    return check_file


def entry_config(entry: CheckEntry, default_timeout_s: float | None = None) -> CheckConfig:
    return CheckConfig(
        id=entry.id,
        name=entry.name or entry.id,
        group=entry.group,
        score_weight=entry.score_weight,
        timeout_s=entry.timeout_s or default_timeout_s,
    )


def build_checks(
    entries: Iterable[CheckEntry],
    registry: CheckRegistry,
    default_timeout_s: float | None = None,
) -> list[Check]:
    """
    Instantiate and init one check per entry.
    Every type is resolved before any init() runs, so an unknown type fails
    the whole load up front.
    """
    entries = list(entries)
    for entry in entries:
        if entry.type not in registry:
            raise UnknownCheckTypeError(entry.type)

    checks: list[Check] = []
    for entry in entries:
        check = registry.create(entry.type)
        check.init(entry_config(entry, default_timeout_s), entry.definition)
        checks.append(check)
    return checks


def load_checks(path: Path, registry: CheckRegistry) -> list[Check]:
    check_file = load_check_file(path)
    return build_checks(check_file.checks, registry, check_file.defaults.timeout_s)
