from __future__ import annotations

import socket

from pydantic import Field

from scoreprobe.checks.base import Check, Definition
from scoreprobe.checks.results import CheckResult
from scoreprobe.context import RunContext
from scoreprobe.errors import ProbeConnectionError

DIAL_TIMEOUT_S = 20.0


class TcpDefinition(Definition):
    host: str = ""  # (required)
    port: int | None = Field(default=None, ge=1, le=65535)  # (required)


class TcpCheck(Check):
    """Passes when a TCP connection to host:port opens."""

    check_type = "tcp"
    definition_model = TcpDefinition
    required_fields = ("host", "port")

    def connect(self, ctx: RunContext) -> socket.socket:
        d = self.definition
        try:
            return socket.create_connection(
                (d.host, d.port), timeout=ctx.timeout_for(DIAL_TIMEOUT_S)
            )
        except OSError as exc:
            raise ProbeConnectionError(f"Connecting to {d.host}:{d.port} failed : {exc}") from exc

    def execute(self, ctx: RunContext, sock: socket.socket, result: CheckResult) -> None:
        host, port = sock.getpeername()[:2]
        result.details["peer"] = f"{host}:{port}"

    def close(self, sock: socket.socket) -> None:
        sock.close()

    def abort(self, sock: socket.socket) -> None:
        sock.close()
