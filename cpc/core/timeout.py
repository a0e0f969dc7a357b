"""Timeout supervision for external commands.

Commands run in their own process group so that a timeout can take down
the whole tree (ansible forks, tofu providers) rather than just the parent.
"""
import logging
import os
import signal
import subprocess
import time
from typing import Callable, Dict, Optional

from ..config import Config
from .command import (
    EXIT_NOT_EXECUTABLE, EXIT_NOT_FOUND, EXIT_TIMEOUT, Command, describe_action, exit_status, run_action
)
from .errors import ErrorRegistry
from .models import Action, ErrorCode, Severity

logger = logging.getLogger("cpc.timeout")

ProgressCallback = Callable[[float, float], None]

CLEANUP_TIMEOUT = 30


def ansible_cleanup() -> Command:
    """Kill ansible-playbook processes left behind by a timed-out run."""
    return Command.of("pkill", "-f", "ansible-playbook")


def terraform_cleanup() -> Command:
    """Kill terraform/tofu processes left behind by a timed-out run."""
    return Command.of("pkill", "-f", "terraform|tofu")


class TimeoutSupervisor:
    """Runs commands with a wall-clock limit and optional cleanup and progress reporting."""

    def __init__(self, errors: ErrorRegistry, grace_period: float = 2, config: Optional[Config] = None):
        self.errors = errors
        self.grace_period = grace_period
        self.config = config or Config()
        self._active: Dict[int, subprocess.Popen] = {}
        self.timeout_count = 0

    def run(self, command: Command, timeout_seconds: Optional[float], description: Optional[str] = None) -> int:
        """Run a command, terminating it after timeout_seconds.

        Returns:
            int: The command's exit status, or 124 when it timed out
        """
        return self._supervise(command, timeout_seconds, description)

    def run_with_cleanup(
        self,
        command: Command,
        timeout_seconds: Optional[float],
        cleanup: Optional[Action],
        description: Optional[str] = None
    ) -> int:
        """Like run(), but execute cleanup once if the command times out.

        Cleanup is best effort: its failure is logged and never changes the
        returned status.
        """
        return self._supervise(command, timeout_seconds, description, cleanup=cleanup)

    def run_with_progress(
        self,
        command: Command,
        timeout_seconds: Optional[float],
        progress_interval: float = 10,
        on_progress: Optional[ProgressCallback] = None,
        description: Optional[str] = None,
        cleanup: Optional[Action] = None
    ) -> int:
        """Like run(), calling on_progress(elapsed, remaining) every progress_interval seconds."""
        if progress_interval <= 0:
            raise ValueError("progress_interval must be positive")
        description = description or "Operation"
        if on_progress is None:
            on_progress = self._log_progress(description, timeout_seconds)
        return self._supervise(
            command, timeout_seconds, description,
            cleanup=cleanup,
            progress_interval=progress_interval,
            on_progress=on_progress
        )

    def check_budget(self, start_time: float, budget_seconds: float, name: str = "operation") -> bool:
        """Return False (and record a timeout) once time.time() - start_time reaches the budget."""
        elapsed = time.time() - start_time
        if elapsed >= budget_seconds:
            self.errors.handle(
                ErrorCode.TIMEOUT,
                f"{name} exceeded time budget ({elapsed:.0f}s >= {budget_seconds}s)",
                Severity.HIGH
            )
            return False
        logger.debug("%s time budget: %.0fs used, %.0fs remaining", name, elapsed, budget_seconds - elapsed)
        return True

    def active_count(self) -> int:
        return len(self._active)

    def cancel_all(self) -> int:
        """Terminate every supervised process that is still running."""
        procs = list(self._active.values())
        if procs:
            logger.warning("Cancelling %d active timeout operations", len(procs))
        for proc in procs:
            self._terminate(proc)
        self._active.clear()
        return len(procs)

    def network_operation(self, command: Command, description: str = "Network operation",
                          timeout_seconds: Optional[float] = None) -> int:
        return self.run(command, timeout_seconds or self.config.NETWORK_TIMEOUT, description)

    def ansible_operation(self, command: Command, description: str = "Ansible operation",
                          timeout_seconds: Optional[float] = None) -> int:
        return self.run_with_cleanup(command, timeout_seconds or self.config.ANSIBLE_TIMEOUT,
                                     ansible_cleanup(), description)

    def kubectl_operation(self, command: Command, description: str = "kubectl operation",
                          timeout_seconds: Optional[float] = None) -> int:
        return self.run(command, timeout_seconds or self.config.KUBECTL_TIMEOUT, description)

    def terraform_operation(self, command: Command, description: str = "Terraform operation",
                            timeout_seconds: Optional[float] = None) -> int:
        return self.run_with_cleanup(command, timeout_seconds or self.config.TERRAFORM_TIMEOUT,
                                     terraform_cleanup(), description)

    def _supervise(
        self,
        command: Command,
        timeout_seconds: Optional[float],
        description: Optional[str],
        cleanup: Optional[Action] = None,
        progress_interval: Optional[float] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> int:
        description = description or "Command execution"
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        if timeout_seconds:
            logger.info("Executing %s with %ss timeout", description, timeout_seconds)
        try:
            proc = command.popen(start_new_session=True)
        except FileNotFoundError:
            self.errors.push(ErrorCode.EXECUTION, f"{description}: command not found: {command.program}",
                             Severity.HIGH, context=str(command))
            return EXIT_NOT_FOUND
        except PermissionError:
            self.errors.push(ErrorCode.EXECUTION, f"{description}: command not executable: {command.program}",
                             Severity.HIGH, context=str(command))
            return EXIT_NOT_EXECUTABLE

        self._active[proc.pid] = proc
        start = time.monotonic()
        deadline = start + timeout_seconds if timeout_seconds else None
        try:
            while True:
                wait_for = None
                if deadline is not None:
                    wait_for = max(0.0, deadline - time.monotonic())
                if progress_interval:
                    wait_for = progress_interval if wait_for is None else min(wait_for, progress_interval)
                try:
                    exit_code = exit_status(proc.wait(timeout=wait_for))
                    break
                except subprocess.TimeoutExpired:
                    pass

                elapsed = time.monotonic() - start
                if deadline is not None and time.monotonic() >= deadline:
                    return self._expire(proc, command, timeout_seconds, description, cleanup)
                if on_progress is not None:
                    remaining = deadline - time.monotonic() if deadline is not None else float("inf")
                    on_progress(elapsed, remaining)
        finally:
            if proc.poll() is None:
                self._terminate(proc)
            self._active.pop(proc.pid, None)

        logger.debug("%s finished in %.1fs (exit code: %d)", description, time.monotonic() - start, exit_code)
        return exit_code

    def _expire(self, proc: subprocess.Popen, command: Command, timeout_seconds: float,
                description: str, cleanup: Optional[Action]) -> int:
        logger.warning("%s timed out after %ss", description, timeout_seconds)
        self.timeout_count += 1
        self._terminate(proc)

        if cleanup is not None:
            logger.info("Executing cleanup: %s", describe_action(cleanup))
            cleanup_code = run_action(cleanup, timeout=CLEANUP_TIMEOUT)
            if cleanup_code != 0:
                logger.warning("Cleanup command failed (exit code: %d)", cleanup_code)

        self.errors.handle(
            ErrorCode.TIMEOUT,
            f"{description} timed out after {timeout_seconds}s",
            Severity.HIGH,
            context=str(command)
        )
        return EXIT_TIMEOUT

    def _terminate(self, proc: subprocess.Popen) -> None:
        """Send SIGTERM to the process group, then SIGKILL after the grace period.

        The group is killed even when its leader exited on SIGTERM, because
        other members may ignore the signal.
        """
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            logger.debug("Process %d ignored SIGTERM, sending SIGKILL", proc.pid)
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()

    @staticmethod
    def _log_progress(description: str, timeout_seconds: Optional[float]) -> ProgressCallback:
        def report(elapsed: float, remaining: float) -> None:
            if timeout_seconds:
                percent = int(elapsed * 100 / timeout_seconds)
                logger.info("%s progress: %d%% (%ds elapsed, %ds remaining)",
                            description, percent, elapsed, remaining)
            else:
                logger.info("%s still running (%ds elapsed)", description, elapsed)
        return report
