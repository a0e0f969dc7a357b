"""Session context owning one instance of every core component.

Each cluster sub-command creates a Session and passes it (or its parts)
to whatever needs retry, timeout, recovery or caching, instead of sharing
module-level state.
"""
import logging
import os
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from ..config import Config
from .cache import CacheStore
from .errors import ErrorRegistry
from .models import ErrorAction, ErrorCode, Operation, RetryPolicy, Severity
from .recovery import RecoveryManager
from .retry import RetryEngine
from .timeout import TimeoutSupervisor

logger = logging.getLogger("cpc.session")


@dataclass
class Session:
    """One orchestration session."""
    errors: ErrorRegistry
    timeouts: TimeoutSupervisor
    retry: RetryEngine
    recovery: RecoveryManager
    cache: CacheStore
    config: Config = field(default_factory=Config)

    @classmethod
    def create(
        cls,
        config_file: Optional[Union[str, Path]] = None,
        cache_dir: Optional[Union[str, Path]] = None,
        recovery_log: Optional[Union[str, Path]] = None,
        debug: Optional[bool] = None,
        test_mode: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        jitter: bool = True,
    ) -> 'Session':
        """Build a session wired Recovery -> Retry -> Timeout around one error registry.

        Args:
            config_file: Optional YAML overrides, applied to this session's
                Config only; a missing file is recorded as a low-severity
                config error and defaults are kept
            cache_dir: Cache directory (default: the configured CACHE_DIR)
            recovery_log: Path of the recovery log file (default:
                cpc_recovery_<pid>.log in the configured REPORT_DIR)
            debug: Override Config.DEBUG
            test_mode: Override Config.TEST_MODE
            sleep: Sleep function used between retries
            rng: Random source for retry jitter
            jitter: Apply jitter to retry delays
        """
        config = Config()
        errors = ErrorRegistry(
            debug=config.DEBUG if debug is None else debug,
            test_mode=config.TEST_MODE if test_mode is None else test_mode,
        )
        if config_file is not None:
            if Path(config_file).is_file():
                try:
                    config.load_file(config_file)
                except ValueError as e:
                    errors.handle(ErrorCode.CONFIG, str(e), Severity.HIGH, ErrorAction.CONTINUE)
            else:
                errors.handle(ErrorCode.CONFIG, f"Config file not found: {config_file}, using defaults",
                              Severity.LOW, ErrorAction.WARN)

        timeouts = TimeoutSupervisor(errors, grace_period=config.TERMINATE_GRACE_PERIOD, config=config)
        retry = RetryEngine(errors, timeouts, sleep=sleep, rng=rng, jitter=jitter)
        if recovery_log is None:
            recovery_log = Path(config.REPORT_DIR) / f"cpc_recovery_{os.getpid()}.log"
        recovery = RecoveryManager(errors, retry, log_path=recovery_log, config=config)
        cache = CacheStore(cache_dir or config.CACHE_DIR)
        return cls(errors=errors, timeouts=timeouts, retry=retry, recovery=recovery, cache=cache, config=config)

    def reset(self) -> None:
        """Start a new logical session on the same components."""
        self.errors.init()
        self.retry.reset()
        self.recovery.init()

    def default_policy(self) -> RetryPolicy:
        """Retry policy built from this session's configuration."""
        return RetryPolicy(
            max_retries=self.config.MAX_RETRIES,
            base_delay=self.config.RETRY_BASE_DELAY,
            max_delay=self.config.RETRY_MAX_DELAY,
            backoff_multiplier=self.config.RETRY_BACKOFF_MULTIPLIER,
        )

    def execute(self, operation: Operation) -> int:
        """Run an operation through recovery, retry and timeout supervision."""
        return self.recovery.execute(operation)

    def write_reports(self, report_dir: Union[str, Path]) -> None:
        report_dir = Path(report_dir)
        self.errors.report(report_dir / "cpc_error_report.txt")
        self.recovery.report(report_dir / "cpc_recovery_report.txt")
