from __future__ import annotations


class ScoreprobeError(RuntimeError):
    pass


# Configuration-time errors. These are raised to the caller and keep the
# offending check out of the scheduled set.


class DefinitionParseError(ScoreprobeError):
    def __init__(self, check_id: str, check_type: str, reason: str) -> None:
        self.check_id = check_id
        self.check_type = check_type
        self.reason = reason
        super().__init__(
            f"Unable to parse definition for {check_type} check {check_id}: {reason}"
        )


class ConfigValidationError(ScoreprobeError):
    def __init__(self, check_id: str, check_type: str, field: str) -> None:
        self.check_id = check_id
        self.check_type = check_type
        self.field = field
        super().__init__(
            f"Error in {check_type} check {check_id}: missing or invalid field {field}"
        )


class UnknownCheckTypeError(ScoreprobeError):
    def __init__(self, check_type: str) -> None:
        self.check_type = check_type
        super().__init__(f"Unknown check type: {check_type}")


# Run-time errors. Probes raise these from their stages; Check.run turns them
# into a failed CheckResult.


class ProbeError(ScoreprobeError):
    pass


class ProbeConnectionError(ProbeError):
    pass


class ProbeAuthenticationError(ProbeError):
    pass


class ProbeExecutionError(ProbeError):
    pass


class ContentMismatchError(ProbeError):
    pass


class CheckTimeoutError(ProbeError):
    pass
