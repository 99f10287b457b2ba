from __future__ import annotations

import base64
import re
import threading
from dataclasses import dataclass
from typing import Literal

import requests
from pydantic import Field, field_validator
from winrm.exceptions import (
    InvalidCredentialsError,
    WinRMError,
    WinRMOperationTimeoutError,
    WinRMTransportError,
)
from winrm.protocol import Protocol

from scoreprobe.checks.base import Check, Definition
from scoreprobe.checks.results import CheckResult
from scoreprobe.context import DEADLINE_EXCEEDED, RunContext
from scoreprobe.errors import (
    CheckTimeoutError,
    ContentMismatchError,
    ProbeAuthenticationError,
    ProbeConnectionError,
    ProbeExecutionError,
)

OPERATION_TIMEOUT_S = 20
READ_TIMEOUT_S = 22.0
CLOSE_READ_TIMEOUT_S = 5.0
MAX_OUTPUT_DETAIL = 1024

_WINRM_ERRORS = (
    WinRMError,
    WinRMTransportError,
    WinRMOperationTimeoutError,
    requests.RequestException,
    OSError,
)


class WinrmDefinition(Definition):
    host: str = ""  # (required) IP or hostname of the WinRM box
    username: str = ""  # (required)
    password: str = ""  # (required)
    cmd: str = ""  # (required) PowerShell command to execute
    encrypted: bool = True
    match_content: bool = False
    content_regex: str = ".*"
    port: int = Field(default=5986, ge=1, le=65535)
    transport: Literal["ntlm", "basic", "plaintext", "ssl", "credssp", "kerberos"] = "ntlm"

    @field_validator("content_regex")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid regex: {exc}") from exc
        return value


@dataclass
class WinrmSession:
    protocol: Protocol
    shell_id: str | None = None


def set_timeouts(protocol: Protocol, read_timeout: float) -> None:
    # Below 2 s the operation timeout can no longer sit under the read
    # timeout; the read timeout still ends the call in time.
    protocol.operation_timeout_sec = max(1, min(OPERATION_TIMEOUT_S, int(read_timeout) - 1))
    protocol.read_timeout_sec = read_timeout
    protocol.transport.read_timeout_sec = read_timeout


def bound_timeouts(protocol: Protocol, ctx: RunContext) -> None:
    set_timeouts(protocol, ctx.timeout_for(READ_TIMEOUT_S))


class _OutputReader(threading.Thread):
    """Streams a command's output until the command reports completion.

    Every poll is bounded by the time left on the context and the context is
    checked between polls, so the reader exits by the deadline.
    """

    def __init__(
        self, ctx: RunContext, protocol: Protocol, shell_id: str, command_id: str
    ) -> None:
        super().__init__(name=f"winrm-output-{command_id}", daemon=True)
        self._ctx = ctx
        self._protocol = protocol
        self._shell_id = shell_id
        self._command_id = command_id
        self._stdout: list[bytes] = []
        self._stderr: list[bytes] = []
        self.status_code: int | None = None
        self.completed = False
        self.error: Exception | None = None

    @property
    def stdout(self) -> bytes:
        return b"".join(self._stdout)

    @property
    def stderr(self) -> bytes:
        return b"".join(self._stderr)

    def run(self) -> None:
        try:
            while not self.completed and not self._ctx.done():
                bound_timeouts(self._protocol, self._ctx)
                try:
                    stdout, stderr, status_code, done = self._protocol.get_command_output_raw(
                        self._shell_id, self._command_id
                    )
                except WinRMOperationTimeoutError:
                    # long-running command, nothing new yet
                    continue
                self._stdout.append(stdout)
                self._stderr.append(stderr)
                self.status_code = status_code
                self.completed = done
        except Exception as exc:
            # re-raised by the owning check after join()
            self.error = exc


def encode_powershell(script: str) -> str:
    return base64.b64encode(script.encode("utf_16_le")).decode("ascii")


class WinrmCheck(Check):
    """Runs a PowerShell command over WinRM, optionally matching its output."""

    check_type = "winrm"
    definition_model = WinrmDefinition
    required_fields = ("host", "username", "password", "cmd")

    def endpoint(self) -> str:
        d = self.definition
        scheme = "https" if d.encrypted else "http"
        return f"{scheme}://{d.host}:{d.port}/wsman"

    def connect(self, ctx: RunContext) -> WinrmSession:
        d = self.definition
        # pywinrm requires the read timeout to exceed the operation timeout.
        read_timeout = max(ctx.timeout_for(READ_TIMEOUT_S), 2.0)
        operation_timeout = max(1, min(OPERATION_TIMEOUT_S, int(read_timeout) - 1))
        try:
            protocol = Protocol(
                endpoint=self.endpoint(),
                transport=d.transport,
                username=d.username,
                password=d.password,
                server_cert_validation="ignore",
                read_timeout_sec=read_timeout,
                operation_timeout_sec=operation_timeout,
            )
        except _WINRM_ERRORS as exc:
            raise ProbeConnectionError(f"Login to WinRM host {d.host} failed : {exc}") from exc
        return WinrmSession(protocol=protocol)

    def authenticate(self, ctx: RunContext, session: WinrmSession) -> None:
        d = self.definition
        bound_timeouts(session.protocol, ctx)
        try:
            session.shell_id = session.protocol.open_shell()
        except InvalidCredentialsError as exc:
            raise ProbeAuthenticationError(
                f"Login to WinRM host {d.host} failed : {exc}"
            ) from exc
        except (requests.ConnectionError, OSError) as exc:
            raise ProbeConnectionError(
                f"Connecting to WinRM host {d.host} failed : {exc}"
            ) from exc
        except _WINRM_ERRORS as exc:
            raise ProbeAuthenticationError(f"Failed to create shell : {exc}") from exc

    def execute(self, ctx: RunContext, session: WinrmSession, result: CheckResult) -> None:
        d = self.definition
        protocol = session.protocol
        bound_timeouts(protocol, ctx)
        try:
            command_id = protocol.run_command(
                session.shell_id, f"powershell -encodedcommand {encode_powershell(d.cmd)}"
            )
        except _WINRM_ERRORS as exc:
            raise ProbeExecutionError(f"Executing command {d.cmd} failed : {exc}") from exc

        reader = _OutputReader(ctx, protocol, session.shell_id, command_id)
        reader.start()
        reader.join(ctx.remaining())
        if reader.is_alive():
            ctx.cancel(DEADLINE_EXCEEDED)
            # The in-flight poll was bounded by the time left when it started.
            reader.join(CLOSE_READ_TIMEOUT_S)
            raise CheckTimeoutError(f"Executing command {d.cmd} timed out")
        ctx.raise_if_done()

        if reader.error is not None:
            raise ProbeExecutionError(
                f"Executing command {d.cmd} failed : {reader.error}"
            ) from reader.error
        if not reader.completed:
            raise CheckTimeoutError(f"Executing command {d.cmd} timed out")

        output = reader.stdout.decode("utf-8", errors="replace")
        result.details["exit_code"] = str(reader.status_code)
        result.details["output"] = output[:MAX_OUTPUT_DETAIL]

        if reader.status_code != 0:
            raise ProbeExecutionError(
                f"Executing command {d.cmd} failed : exit status {reader.status_code}"
            )

        if not d.match_content:
            return
        if re.search(d.content_regex, output) is None:
            raise ContentMismatchError("Matching content not found")

    def close(self, session: WinrmSession) -> None:
        protocol = session.protocol
        if session.shell_id is None:
            protocol.transport.close_session()
            return
        # Also runs past the deadline, so the remote delete gets its own short
        # timeouts.
        set_timeouts(protocol, CLOSE_READ_TIMEOUT_S)
        try:
            protocol.close_shell(session.shell_id)
        finally:
            protocol.transport.close_session()

    def abort(self, session: WinrmSession) -> None:
        session.protocol.transport.close_session()
