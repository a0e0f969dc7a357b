"""Retry with exponential backoff and jitter."""
import functools
import logging
import random
import time
from typing import Any, Callable, Dict, Optional, Tuple, Type

from .command import run_action
from .errors import ErrorRegistry
from .exceptions import RetryError
from .models import ErrorCode, Operation, RetryPolicy, RetryResult, Severity
from .timeout import TimeoutSupervisor

logger = logging.getLogger("cpc.retry")

JITTER_FRACTION = 0.25
MIN_DELAY = 1


def compute_delay(
    attempt: int,
    base: float,
    max_delay: float,
    multiplier: float = 2,
    jitter: bool = True,
    rng: Optional[random.Random] = None
) -> float:
    """Delay before the retry that follows a failed attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        base: Delay after the first failure
        max_delay: Upper bound applied before jitter
        multiplier: Growth factor per attempt
        jitter: Add a uniform offset of up to ±25% of the delay
        rng: Random source, for reproducible schedules

    Returns:
        float: Seconds to wait, never less than 1
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    delay = min(base * multiplier ** (attempt - 1), max_delay)
    if jitter:
        spread = delay * JITTER_FRACTION
        delay += (rng or random).uniform(-spread, spread)
    return max(delay, MIN_DELAY)


class RetryEngine:
    """Re-executes operations until success, exhaustion or a stop condition."""

    def __init__(
        self,
        errors: ErrorRegistry,
        supervisor: TimeoutSupervisor,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        jitter: bool = True
    ):
        self.errors = errors
        self.supervisor = supervisor
        self.sleep = sleep
        self.rng = rng
        self.jitter = jitter
        self.total_attempts = 0
        self.succeeded = 0
        self.failed = 0

    def reset(self) -> None:
        self.total_attempts = 0
        self.succeeded = 0
        self.failed = 0
        logger.debug("Retry system initialized")

    def delay_for(self, attempt: int, policy: RetryPolicy) -> float:
        return compute_delay(attempt, policy.base_delay, policy.max_delay, policy.backoff_multiplier,
                             jitter=self.jitter, rng=self.rng)

    def execute(self, operation: Operation) -> RetryResult:
        """Run the operation's command with its retry policy.

        Each attempt goes through the timeout supervisor using the
        operation's timeout and cleanup action.
        """
        return self._run(operation, validate=False)

    def execute_with_validation(self, operation: Operation) -> RetryResult:
        """Like execute(), but an attempt only counts when validation passes too."""
        return self._run(operation, validate=True)

    def stats(self) -> Dict[str, int]:
        result = {
            'total_attempts': self.total_attempts,
            'succeeded': self.succeeded,
            'failed': self.failed,
        }
        if self.total_attempts > 0:
            result['success_rate'] = self.succeeded * 100 // self.total_attempts
        return result

    def _attempt(self, operation: Operation, validate: bool) -> int:
        if operation.progress_interval:
            exit_code = self.supervisor.run_with_progress(
                operation.command, operation.timeout_seconds, operation.progress_interval,
                description=operation.name, cleanup=operation.cleanup
            )
        else:
            exit_code = self.supervisor.run_with_cleanup(
                operation.command, operation.timeout_seconds, operation.cleanup, operation.name
            )
        if exit_code != 0 or not validate or operation.validation is None:
            return exit_code
        if run_action(operation.validation) != 0:
            logger.warning("Validation failed for %s", operation.name)
            return 1
        return 0

    def _run(self, operation: Operation, validate: bool) -> RetryResult:
        policy = operation.retry_policy
        max_attempts = policy.max_retries + 1
        exit_code = 0

        for attempt in range(1, max_attempts + 1):
            self.total_attempts += 1
            logger.info("%s (attempt %d/%d)", operation.name, attempt, max_attempts)

            exit_code = self._attempt(operation, validate)
            if exit_code == 0:
                self.succeeded += 1
                logger.info("%s succeeded on attempt %d", operation.name, attempt)
                return RetryResult(True, 0, attempt)

            logger.warning("%s failed on attempt %d (exit code: %d)", operation.name, attempt, exit_code)

            if policy.retry_condition is not None and not policy.retry_condition(exit_code):
                self.failed += 1
                self.errors.handle(
                    ErrorCode.EXECUTION,
                    f"{operation.name} failed with non-retryable exit code {exit_code}",
                    Severity.HIGH,
                    context=str(operation.command)
                )
                return RetryResult(False, exit_code, attempt)

            if attempt < max_attempts:
                delay = self.delay_for(attempt, policy)
                logger.info("Retrying in %.1f seconds...", delay)
                self.sleep(delay)

        self.failed += 1
        self.errors.handle(
            ErrorCode.EXECUTION,
            f"{operation.name} failed after {policy.max_retries} retries",
            Severity.HIGH,
            context=str(operation.command)
        )
        return RetryResult(False, exit_code, max_attempts)


def retrying(
    policy: RetryPolicy,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    jitter: bool = True
):
    """Decorator retrying a Python callable with the policy's backoff schedule.

    Args:
        policy: Retry policy; retry_condition is not consulted
        exceptions: Exceptions that trigger a retry
        sleep: Sleep function, replaceable in tests
        jitter: Apply jitter to the delays

    Returns:
        Decorated function raising RetryError once every attempt failed
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception = None
            max_attempts = policy.max_retries + 1
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < max_attempts:
                        wait_time = compute_delay(attempt, policy.base_delay, policy.max_delay,
                                                  policy.backoff_multiplier, jitter=jitter)
                        logger.warning(
                            f"Attempt {attempt} failed: {str(e)}. "
                            f"Retrying in {wait_time:.2f}s..."
                        )
                        sleep(wait_time)

            raise RetryError(
                f"Failed after {max_attempts} attempts. Last error: {str(last_exception)}",
                attempts=max_attempts
            ) from last_exception
        return wrapper
    return decorator
