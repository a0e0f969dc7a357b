"""Data models for the resilient-execution core."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Callable, Optional, Union

from .command import Command


class ErrorCode(IntEnum):
    """Error taxonomy. Values are stable and never renumbered."""
    NETWORK = 100
    AUTH = 101
    CONFIG = 102
    DEPENDENCY = 103
    TIMEOUT = 104
    VALIDATION = 105
    EXECUTION = 106
    UNKNOWN = 199


class Severity(IntEnum):
    """Error severity, 1 (critical) to 5 (info)."""
    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4
    INFO = 5


class ErrorAction(str, Enum):
    """What ErrorRegistry.handle does after recording an error."""
    ABORT = 'abort'
    RETRY = 'retry'
    WARN = 'warn'
    CONTINUE = 'continue'


class HandleSignal(IntEnum):
    """Value returned by ErrorRegistry.handle for non-aborting actions."""
    OK = 0
    ERROR = 1
    RETRY = 2


class RecoveryState(str, Enum):
    """Recovery state of a session."""
    CLEAN = 'CLEAN'
    PARTIAL = 'PARTIAL'
    FAILED = 'FAILED'
    RECOVERED = 'RECOVERED'


class Freshness(str, Enum):
    """Derived status of a cache entry."""
    MISSING = 'missing'
    STALE = 'stale'
    FRESH = 'fresh'


# A Command spawned as a child process, or a callable returning
# True/None (success), False (failure) or an int exit status.
Action = Union[Command, Callable[[], Any]]


@dataclass(frozen=True)
class ErrorRecord:
    """A single entry on the error stack."""
    code: ErrorCode
    severity: Severity
    message: str
    context: str = ''
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, 'code', ErrorCode(self.code))
        except ValueError:
            raise ValueError(f"Unknown error code: {self.code!r}") from None
        try:
            object.__setattr__(self, 'severity', Severity(self.severity))
        except ValueError:
            raise ValueError(f"Severity must be between 1 and 5, got {self.severity!r}") from None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Pure data, no mutable state."""
    max_retries: int = 3
    base_delay: float = 2
    max_delay: float = 60
    backoff_multiplier: float = 2
    retry_condition: Optional[Callable[[int], bool]] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


def retry_on_exit_codes(*codes: int) -> Callable[[int], bool]:
    """Build a retry condition that keeps retrying only for the given exit statuses."""
    allowed = frozenset(codes)

    def condition(exit_code: int) -> bool:
        return exit_code in allowed

    condition.__name__ = f"retry_on_exit_codes{tuple(sorted(allowed))}"
    return condition


DEFAULT_POLICY = RetryPolicy()
# curl-style connection failures: generic error, operation timed out, interrupted
NETWORK_POLICY = RetryPolicy(max_retries=5, base_delay=5, retry_condition=retry_on_exit_codes(1, 28, 130))
# ansible-playbook: generic error, host failures, unreachable hosts
ANSIBLE_POLICY = RetryPolicy(max_retries=2, retry_condition=retry_on_exit_codes(1, 2, 4))


@dataclass(frozen=True)
class Operation:
    """A named unit of work submitted to the core."""
    command: Command
    name: str
    timeout_seconds: Optional[float] = None
    retry_policy: RetryPolicy = DEFAULT_POLICY
    validation: Optional[Action] = None
    rollback: Optional[Action] = None
    cleanup: Optional[Action] = None
    progress_interval: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Operation name is required")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass(frozen=True)
class Checkpoint:
    """A named, timestamped marker in an operation's lifecycle."""
    name: str
    payload: Any = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RetryResult:
    """Outcome of RetryEngine.execute."""
    success: bool
    exit_code: int
    attempts: int

    def __bool__(self) -> bool:
        return self.success
