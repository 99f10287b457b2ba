"""Check contract shared by every probe.

A check is configured once with init() and then run any number of times.
run() walks the probe through its stages in order

    connecting -> authenticating -> executing -> completed

and always enters closing to release whatever connect() opened, whichever
way the run ends.
Failures never escape run(); they end up in the returned CheckResult.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from scoreprobe.checks.results import CheckConfig, CheckResult
from scoreprobe.context import RunContext, timeout_message
from scoreprobe.errors import (
    ConfigValidationError,
    DefinitionParseError,
    ProbeError,
    ScoreprobeError,
)

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    UNSTARTED = "unstarted"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    EXECUTING = "executing"
    CLOSING = "closing"
    COMPLETED = "completed"


class Definition(BaseModel):
    """Probe-specific fields. Defaults declared on subclasses apply to any
    key the raw definition leaves out."""

    model_config = ConfigDict(extra="ignore")


def field_label(name: str) -> str:
    # content_regex -> ContentRegex, the key spelling used in check files
    return "".join(part.capitalize() for part in name.split("_"))


def _normalize_key(key: str) -> str:
    return key.replace("_", "").replace("-", "").lower()


def _load_definition(
    raw: bytes | str | Mapping[str, Any] | None, check_id: str, check_type: str
) -> dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DefinitionParseError(check_id, check_type, str(exc)) from exc
    if not raw.strip():
        return {}

    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise DefinitionParseError(check_id, check_type, str(exc)) from exc
    if not isinstance(data, dict):
        raise DefinitionParseError(check_id, check_type, "definition is not an object")
    return data


class Check(ABC):
    check_type: ClassVar[str]
    definition_model: ClassVar[type[Definition]] = Definition
    # Validation order; the first missing one is the one reported.
    required_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(self) -> None:
        self.config: CheckConfig | None = None
        self.definition: Any = None

    def init(
        self,
        config: CheckConfig,
        raw_definition: bytes | str | Mapping[str, Any] | None,
    ) -> None:
        data = _load_definition(raw_definition, config.id, self.check_type)

        # Keys match case-insensitively: Host, host and HOST are the same.
        known = {_normalize_key(name): name for name in self.definition_model.model_fields}
        fields = {}
        for key, value in data.items():
            name = known.get(_normalize_key(str(key)))
            if name is not None:
                fields[name] = value

        try:
            definition = self.definition_model.model_validate(fields)
        except ValidationError as exc:
            loc = exc.errors()[0]["loc"]
            field = field_label(str(loc[0])) if loc else "definition"
            raise ConfigValidationError(config.id, self.check_type, field) from exc

        self.definition = definition
        self.config = config

        for name in self.required_fields:
            value = getattr(definition, name)
            if value is None or value == "":
                raise ConfigValidationError(config.id, self.check_type, field_label(name))

    def get_config(self) -> CheckConfig | None:
        return self.config

    def new_result(self) -> CheckResult:
        if self.config is None:
            raise ScoreprobeError(f"{self.check_type} check has not been initialized")
        return CheckResult.from_config(self.config, self.check_type)

    def run(self, ctx: RunContext, result: CheckResult) -> CheckResult:
        stage = Stage.UNSTARTED
        session: Any = None
        release = None
        try:
            if self.definition is None:
                raise ProbeError(f"{self.check_type} check has not been initialized")

            stage = Stage.CONNECTING
            ctx.raise_if_done()
            session = self.connect(ctx)
            release = ctx.on_cancel(lambda: self.abort(session))

            stage = Stage.AUTHENTICATING
            ctx.raise_if_done()
            self.authenticate(ctx, session)

            stage = Stage.EXECUTING
            ctx.raise_if_done()
            self.execute(ctx, session, result)
            ctx.raise_if_done()

            stage = Stage.COMPLETED
            result.succeed()
        except Exception as exc:
            if ctx.done():
                result.fail(timeout_message(ctx, stage.value))
            elif isinstance(exc, ProbeError):
                result.fail(str(exc))
            else:
                logger.exception(
                    "%s check %s failed unexpectedly while %s",
                    self.check_type,
                    result.id,
                    stage.value,
                )
                result.fail(f"Unexpected error while {stage.value} : {exc}")
        finally:
            if release is not None:
                release()
            if session is not None:
                stage = Stage.CLOSING
                self._close_quietly(session, result, stage)
        return result

    def _close_quietly(self, session: Any, result: CheckResult, stage: Stage) -> None:
        try:
            self.close(session)
        except Exception as exc:
            logger.warning(
                "%s check %s failed while %s its connection: %s",
                self.check_type,
                result.id,
                stage.value,
                exc,
            )

    @abstractmethod
    def connect(self, ctx: RunContext) -> Any:
        """Open the connection or session used by the later stages."""

    def authenticate(self, ctx: RunContext, session: Any) -> None:
        pass

    @abstractmethod
    def execute(self, ctx: RunContext, session: Any, result: CheckResult) -> None:
        """Exercise the service; raise a ProbeError subclass on failure."""

    @abstractmethod
    def close(self, session: Any) -> None:
        """Release the session. Called on every exit path."""

    def abort(self, session: Any) -> None:
        """Force-release the session from the watchdog thread.

        Called when the context is cancelled while a stage is still blocked.
        close() still runs afterwards from the probe's own thread.
        """
