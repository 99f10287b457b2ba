from __future__ import annotations

import imaplib
import ssl

from pydantic import Field

from scoreprobe.checks.base import Check, Definition
from scoreprobe.checks.results import CheckResult
from scoreprobe.context import RunContext
from scoreprobe.errors import (
    ProbeAuthenticationError,
    ProbeConnectionError,
    ProbeExecutionError,
)

DIAL_TIMEOUT_S = 20.0
COMMAND_TIMEOUT_S = 5.0


def _describe(exc: Exception) -> str:
    # imaplib raises with the server's raw bytes as the message
    if exc.args and isinstance(exc.args[0], bytes):
        return exc.args[0].decode("utf-8", errors="replace")
    return str(exc)


class ImapDefinition(Definition):
    host: str = ""  # (required) IP or hostname of the IMAP server
    username: str = ""  # (required)
    password: str = ""  # (required)
    encrypted: bool = False  # IMAPS
    port: int = Field(default=143, ge=1, le=65535)


class ImapCheck(Check):
    """Logs in and lists mailboxes."""

    check_type = "imap"
    definition_model = ImapDefinition
    required_fields = ("host", "username", "password")

    def connect(self, ctx: RunContext) -> imaplib.IMAP4:
        d = self.definition
        timeout = ctx.timeout_for(DIAL_TIMEOUT_S)
        try:
            if d.encrypted:
                conn = imaplib.IMAP4_SSL(
                    d.host,
                    d.port,
                    ssl_context=ssl.create_default_context(),
                    timeout=timeout,
                )
            else:
                conn = imaplib.IMAP4(d.host, d.port, timeout=timeout)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ProbeConnectionError(
                f"Connecting to server {d.host} failed : {_describe(exc)}"
            ) from exc
        return conn

    def authenticate(self, ctx: RunContext, conn: imaplib.IMAP4) -> None:
        d = self.definition
        conn.sock.settimeout(ctx.timeout_for(COMMAND_TIMEOUT_S))
        try:
            conn.login(d.username, d.password)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ProbeAuthenticationError(
                f"Login with user {d.username} failed : {_describe(exc)}"
            ) from exc

    def execute(self, ctx: RunContext, conn: imaplib.IMAP4, result: CheckResult) -> None:
        conn.sock.settimeout(ctx.timeout_for(COMMAND_TIMEOUT_S))
        try:
            typ, data = conn.list()
        except (OSError, imaplib.IMAP4.error) as exc:
            raise ProbeExecutionError(f"Listing mailboxes failed : {_describe(exc)}") from exc
        if typ != "OK":
            raise ProbeExecutionError(f"Listing mailboxes failed : {typ}")
        result.details["mailboxes"] = str(sum(1 for item in data if item))

    def close(self, conn: imaplib.IMAP4) -> None:
        try:
            conn.logout()
        except (OSError, ValueError, imaplib.IMAP4.error):
            # logout() leaves the socket open when LOGOUT itself fails
            conn.file.close()
            conn.sock.close()
            raise

    def abort(self, conn: imaplib.IMAP4) -> None:
        conn.shutdown()
