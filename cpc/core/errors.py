"""Centralized error registry.

Every failure inside the core is recorded here exactly once before the
caller-selected action (abort, retry, warn, continue) is taken. The registry
is owned by a Session, so independent sessions keep independent stacks.
"""
import getpass
import logging
import os
import platform
import shutil
import socket
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .command import Command, run_action
from .models import ErrorAction, ErrorCode, ErrorRecord, HandleSignal, Severity

logger = logging.getLogger("cpc.errors")


class ErrorRegistry:
    """Append-only error stack with taxonomy-aware handling."""

    def __init__(self, debug: bool = False, test_mode: bool = False):
        self.debug = debug
        self.test_mode = test_mode
        self._records: List[ErrorRecord] = []
        self._count = 0
        self.correlation_id = ""
        self.init()

    def init(self) -> None:
        """Start a new logical session: empty stack, zero counter, fresh correlation id."""
        self._records = []
        self._count = 0
        self.correlation_id = f"{int(time.time())}-{os.getpid()}"
        logger.debug("Error handling initialized with correlation ID: %s", self.correlation_id)

    def push(
        self,
        code: ErrorCode,
        message: str,
        severity: Severity = Severity.MEDIUM,
        context: str = ""
    ) -> ErrorRecord:
        """Append an error record. Never fails for valid taxonomy values."""
        record = ErrorRecord(code=code, severity=severity, message=message, context=context or "")
        self._records.append(record)
        self._count += 1

        logger.error("[%d] %s", record.code.value, message)
        if record.context:
            logger.debug("Context: %s", record.context)
        return record

    def handle(
        self,
        code: ErrorCode,
        message: str,
        severity: Severity = Severity.MEDIUM,
        action: Union[ErrorAction, str] = ErrorAction.CONTINUE,
        context: str = ""
    ) -> HandleSignal:
        """Record an error, then act on it.

        Args:
            code: Taxonomy member
            message: Human-readable description
            severity: Severity of the error
            action: abort exits the process, retry asks the caller to retry,
                warn logs and carries on, continue logs and hands a non-zero
                signal back to the caller
            context: Optional free-form context

        Returns:
            HandleSignal: RETRY for retry, OK for warn, ERROR for continue

        Raises:
            SystemExit: With status 1 when action is abort
        """
        action = ErrorAction(action)
        self.push(code, message, severity, context)

        if action is ErrorAction.ABORT:
            logger.critical("FATAL: %s", message, stack_info=self.debug)
            print(f"❌ {message}", file=sys.stderr)
            sys.exit(1)
        if action is ErrorAction.RETRY:
            logger.warning("Error encountered. Will retry operation.")
            return HandleSignal.RETRY
        if action is ErrorAction.WARN:
            logger.warning("Non-critical error: %s", message)
            return HandleSignal.OK
        logger.error("Error encountered but continuing: %s", message)
        return HandleSignal.ERROR

    @property
    def records(self) -> List[ErrorRecord]:
        return list(self._records)

    @property
    def count(self) -> int:
        return self._count

    @property
    def last(self) -> Optional[ErrorRecord]:
        return self._records[-1] if self._records else None

    def has_critical(self) -> bool:
        return any(r.severity is Severity.CRITICAL for r in self._records)

    def clear(self) -> None:
        """Empty the stack and reset the counter, keeping the correlation id."""
        self._records = []
        self._count = 0

    # Validation helpers. The code, severity and action each one uses is
    # part of the taxonomy contract.

    def validate_command(
        self,
        command: Command,
        error_message: str = "Command failed",
        severity: Severity = Severity.MEDIUM
    ) -> bool:
        """Run a command and record an EXECUTION error if it exits non-zero."""
        logger.debug("Executing: %s", command)
        exit_code = run_action(command)
        if exit_code == 0:
            return True
        self.handle(ErrorCode.EXECUTION, f"{error_message} (exit code: {exit_code})", severity)
        return False

    def validate_file(self, path: Union[str, Path], error_message: Optional[str] = None) -> bool:
        if Path(path).is_file():
            return True
        self.handle(ErrorCode.VALIDATION, error_message or f"File not found: {path}", Severity.HIGH)
        return False

    def validate_directory(self, path: Union[str, Path], error_message: Optional[str] = None) -> bool:
        if Path(path).is_dir():
            return True
        self.handle(ErrorCode.VALIDATION, error_message or f"Directory not found: {path}", Severity.HIGH)
        return False

    def validate_network(
        self,
        host: str,
        port: Optional[int] = None,
        timeout: float = 5,
        error_message: str = "Network connection failed"
    ) -> bool:
        """Check reachability with a TCP connect (port given) or a single ping."""
        if self.test_mode:
            logger.debug("Test mode: skipping network check for %s:%s", host, port)
            return True

        if port:
            try:
                with socket.create_connection((host, int(port)), timeout=timeout):
                    return True
            except OSError as e:
                logger.debug("TCP connect to %s:%s failed: %s", host, port, e)
        else:
            try:
                result = subprocess.run(
                    ["ping", "-c", "1", "-W", "1", host],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=timeout,
                    check=False
                )
                if result.returncode == 0:
                    return True
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.debug("ping %s failed: %s", host, e)

        self.handle(
            ErrorCode.NETWORK,
            f"{error_message} (host: {host}, port: {port or ''})",
            Severity.HIGH
        )
        return False

    def validate_command_exists(
        self,
        name: str,
        package_hint: str = "",
        action: Union[ErrorAction, str] = ErrorAction.ABORT
    ) -> bool:
        """Check a required binary is on PATH; aborts the process when it is not."""
        if shutil.which(name):
            return True
        if self.test_mode:
            logger.debug("Test mode: ignoring missing command '%s'", name)
            return True

        message = f"Required command '{name}' not found"
        if package_hint:
            message = f"{message}. Try: {package_hint}"
        self.handle(ErrorCode.DEPENDENCY, message, Severity.CRITICAL, action)
        return False

    def report(self, path: Union[str, Path]) -> Path:
        """Write a human-readable error report and return its path."""
        path = Path(path)
        lines = [
            "=== CPC Error Report ===",
            f"Correlation ID: {self.correlation_id}",
            f"Timestamp: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"Total Errors: {self._count}",
            "",
        ]
        if self._records:
            lines.append("=== Error Details ===")
            lines.append(f"{'TIMESTAMP':<20} {'CODE':<5} {'SEVERITY':<8} {'MESSAGE':<50} CONTEXT")
            lines.append("-" * 100)
            for r in self._records:
                ts = r.timestamp.strftime('%Y-%m-%d %H:%M:%S')
                lines.append(
                    f"{ts:<20} {r.code.value:<5} {r.severity.value:<8} {r.message:<50} {r.context}".rstrip()
                )
        else:
            lines.append("No errors recorded.")

        uname = platform.uname()
        lines += [
            "",
            "=== System Information ===",
            f"OS: {uname.system} {uname.release}",
            f"Python: {platform.python_version()}",
            f"User: {current_user()}",
            f"Working Directory: {os.getcwd()}",
        ]

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("Error report generated: %s", path)
        return path


def current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
