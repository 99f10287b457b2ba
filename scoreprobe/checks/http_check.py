from __future__ import annotations

import re
import time

import requests
from pydantic import Field, field_validator

from scoreprobe.checks.base import Check, Definition
from scoreprobe.checks.results import CheckResult
from scoreprobe.context import RunContext
from scoreprobe.errors import (
    ContentMismatchError,
    ProbeConnectionError,
    ProbeExecutionError,
)

CONNECT_TIMEOUT_S = 10.0
READ_TIMEOUT_S = 20.0


class HttpDefinition(Definition):
    host: str = ""  # (required)
    port: int = Field(default=80, ge=1, le=65535)
    https: bool = False
    path: str = "/"
    code: int = 200
    verify: bool = False
    match_content: bool = False
    content_regex: str = ".*"

    @field_validator("content_regex")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regex: {exc}") from exc
        return value


class HttpCheck(Check):
    check_type = "http"
    definition_model = HttpDefinition
    required_fields = ("host",)

    def url(self) -> str:
        d = self.definition
        scheme = "https" if d.https else "http"
        path = d.path if d.path.startswith("/") else f"/{d.path}"
        return f"{scheme}://{d.host}:{d.port}{path}"

    def connect(self, ctx: RunContext) -> requests.Session:
        session = requests.Session()
        session.verify = self.definition.verify
        return session

    def execute(self, ctx: RunContext, session: requests.Session, result: CheckResult) -> None:
        d = self.definition
        url = self.url()
        start = time.perf_counter()
        try:
            r = session.get(
                url,
                timeout=(ctx.timeout_for(CONNECT_TIMEOUT_S), ctx.timeout_for(READ_TIMEOUT_S)),
            )
        except requests.ConnectionError as exc:
            raise ProbeConnectionError(f"Connecting to {d.host} failed : {exc}") from exc
        except requests.RequestException as exc:
            raise ProbeExecutionError(f"Request to {url} failed : {exc}") from exc

        result.details["latency_ms"] = str(int((time.perf_counter() - start) * 1000))
        result.details["status_code"] = str(r.status_code)

        if r.status_code != d.code:
            raise ProbeExecutionError(
                f"Received bad status code {r.status_code} from {url}, expected {d.code}"
            )
        if d.match_content and re.search(d.content_regex, r.text) is None:
            raise ContentMismatchError("Matching content not found")

    def close(self, session: requests.Session) -> None:
        session.close()

    def abort(self, session: requests.Session) -> None:
        session.close()
