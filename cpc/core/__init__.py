"""Resilient-execution core.

This package provides the primitives every cpc sub-command is built on:

- command: Structured commands spawned without a shell
- errors: Error taxonomy and the session error stack
- cache: Freshness-checked file cache
- retry: Backoff schedule and retry engine
- timeout: Timeout supervision with cleanup and progress reporting
- recovery: Checkpoints, validation and rollback
- session: Context object wiring the above together
"""

from .cache import (
    CacheStore, KNOWN_CACHE_PATTERNS, SECRETS_CACHE_TTL, STATUS_CACHE_TTL, TOFU_OUTPUT_CACHE_TTL
)
from .command import EXIT_TIMEOUT, Command, as_command, run_action
from .errors import ErrorRegistry
from .exceptions import CommandError, CpcError, RetryError
from .models import (
    ANSIBLE_POLICY, DEFAULT_POLICY, NETWORK_POLICY, Checkpoint, ErrorAction, ErrorCode, ErrorRecord,
    Freshness, HandleSignal, Operation, RecoveryState, RetryPolicy, RetryResult, Severity, retry_on_exit_codes
)
from .recovery import RecoveryManager
from .retry import RetryEngine, compute_delay, retrying
from .session import Session
from .timeout import TimeoutSupervisor, ansible_cleanup, terraform_cleanup

__all__ = [
    'CacheStore',
    'KNOWN_CACHE_PATTERNS',
    'SECRETS_CACHE_TTL',
    'STATUS_CACHE_TTL',
    'TOFU_OUTPUT_CACHE_TTL',
    'EXIT_TIMEOUT',
    'Command',
    'as_command',
    'run_action',
    'ErrorRegistry',
    'CommandError',
    'CpcError',
    'RetryError',
    'ANSIBLE_POLICY',
    'DEFAULT_POLICY',
    'NETWORK_POLICY',
    'Checkpoint',
    'ErrorAction',
    'ErrorCode',
    'ErrorRecord',
    'Freshness',
    'HandleSignal',
    'Operation',
    'RecoveryState',
    'RetryPolicy',
    'RetryResult',
    'Severity',
    'retry_on_exit_codes',
    'RecoveryManager',
    'RetryEngine',
    'compute_delay',
    'retrying',
    'Session',
    'TimeoutSupervisor',
    'ansible_cleanup',
    'terraform_cleanup',
]
