"""Exception hierarchy for the cpc core."""


class CpcError(Exception):
    """Base error for cpc orchestration helpers."""


class CommandError(CpcError, ValueError):
    """Raised when a command cannot be constructed (empty argv, bad quoting)."""


class RetryError(CpcError):
    """Raised by the retrying decorator once every attempt has failed."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts
