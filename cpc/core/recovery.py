"""Checkpointed execution with rollback on failure.

State machine per session::

    CLEAN --start--> PARTIAL --success--> CLEAN
                        |
                        +--failure--> FAILED --rollback ok--> RECOVERED

A run that starts while the session is FAILED or RECOVERED leaves the state
alone on success; callers clear it explicitly with cleanup().
"""
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..config import Config
from .command import Command, describe_action, run_action
from .errors import ErrorRegistry, current_user
from .models import (
    ANSIBLE_POLICY, NETWORK_POLICY, Action, Checkpoint, ErrorCode, Operation, RecoveryState, Severity
)
from .retry import RetryEngine
from .timeout import ansible_cleanup

logger = logging.getLogger("cpc.recovery")


class RecoveryManager:
    """Runs operations between pre/post checkpoints and rolls back failures."""

    def __init__(self, errors: ErrorRegistry, retry: RetryEngine, log_path: Optional[Union[str, Path]] = None,
                 config: Optional[Config] = None):
        self.errors = errors
        self.retry = retry
        self.config = config or retry.supervisor.config
        self.log_path = Path(log_path) if log_path else None
        self.state = RecoveryState.CLEAN
        self._checkpoints: List[Checkpoint] = []
        self._rollbacks: Dict[str, Action] = {}
        self._log_lines: List[str] = []
        self.init()

    def init(self) -> None:
        """Reset state to CLEAN, forget checkpoints and start a new recovery log."""
        self.state = RecoveryState.CLEAN
        self._checkpoints = []
        self._rollbacks = {}
        self._log_lines = [
            "=== CPC Recovery Log ===",
            f"Started: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"PID: {os.getpid()}",
            f"User: {current_user()}",
            f"Working Directory: {os.getcwd()}",
            "",
        ]
        if self.log_path:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                self.log_path.write_text("\n".join(self._log_lines) + "\n", encoding="utf-8")
            except OSError as e:
                logger.warning("Cannot write recovery log %s: %s", self.log_path, e)
            else:
                logger.info("Recovery system initialized. Log: %s", self.log_path)

    @property
    def checkpoints(self) -> List[Checkpoint]:
        return list(self._checkpoints)

    def checkpoint(self, name: str, payload: Any = None) -> Checkpoint:
        """Append a checkpoint to the log."""
        cp = Checkpoint(name=name, payload=payload)
        self._checkpoints.append(cp)
        self._log(f"CHECKPOINT: {cp.timestamp:%Y-%m-%d %H:%M:%S}|{name}|{'' if payload is None else payload}")
        logger.debug("Recovery checkpoint created: %s", name)
        return cp

    def execute(self, operation: Operation) -> int:
        """Run an operation with checkpoints, validation and rollback.

        Returns:
            int: 0 when the command and its validation succeeded, otherwise
            a non-zero status whether or not the rollback worked. Use
            ``state`` to tell FAILED from RECOVERED.
        """
        name = operation.name
        if operation.rollback is not None:
            self._rollbacks[name] = operation.rollback

        self.checkpoint(f"pre_{name}", f"state_before_{name}")
        if self.state is RecoveryState.CLEAN:
            self.state = RecoveryState.PARTIAL
        logger.info("Starting recoverable operation: %s", name)

        result = self.retry.execute(operation)
        exit_code = result.exit_code
        if result.success and operation.validation is not None:
            if run_action(operation.validation) != 0:
                self.errors.push(ErrorCode.VALIDATION, f"Operation {name} validation failed", Severity.HIGH,
                                 context=describe_action(operation.validation))
                exit_code = 1

        if exit_code == 0:
            logger.info("✅ Operation %s completed%s", name, " and validated" if operation.validation else "")
            self.checkpoint(f"post_{name}", f"state_after_{name}")
            if self.state is RecoveryState.PARTIAL:
                self.state = RecoveryState.CLEAN
            return 0

        logger.error("Operation %s failed (exit code: %d)", name, exit_code)
        self.state = RecoveryState.FAILED
        self._roll_back(name, operation.rollback)
        return exit_code

    def rollback_to(self, checkpoint_name: str) -> Optional[Checkpoint]:
        """Roll back to a named checkpoint and return the checkpoint that was used.

        When the name occurs more than once the most recent checkpoint wins.
        Only ``pre_<operation>`` checkpoints have a concrete rollback: the
        rollback action registered for that operation is run again. Other
        checkpoints are acknowledged with a warning and nothing else.

        Returns None when the checkpoint is unknown or its rollback failed.
        """
        logger.info("Attempting rollback to checkpoint: %s", checkpoint_name)
        found = next((cp for cp in reversed(self._checkpoints) if cp.name == checkpoint_name), None)
        if found is None:
            self.errors.push(ErrorCode.VALIDATION, f"Checkpoint '{checkpoint_name}' not found", Severity.MEDIUM)
            return None

        if checkpoint_name.startswith("pre_"):
            operation_name = checkpoint_name[len("pre_"):]
            rollback = self._rollbacks.get(operation_name)
            if rollback is None:
                logger.warning("No rollback registered for operation: %s", operation_name)
            else:
                logger.info("Rolling back operation: %s", operation_name)
                exit_code = run_action(rollback)
                if exit_code != 0:
                    self.errors.push(ErrorCode.EXECUTION,
                                     f"Rollback of {operation_name} failed (exit code: {exit_code})",
                                     Severity.HIGH, context=describe_action(rollback))
                    return None
                if self.state is RecoveryState.FAILED:
                    self.state = RecoveryState.RECOVERED
        else:
            logger.warning("Generic rollback for checkpoint: %s", checkpoint_name)

        self.checkpoint(f"rollback_to_{checkpoint_name}", f"rolled_back_to_{checkpoint_name}")
        return found

    def is_needed(self) -> bool:
        return self.state is not RecoveryState.CLEAN

    def report(self, path: Union[str, Path]) -> Path:
        """Write the checkpoint log and current state to a text file."""
        path = Path(path)
        lines = [
            "=== CPC Recovery Report ===",
            f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"Current State: {self.state.value}",
            f"Total Checkpoints: {len(self._checkpoints)}",
            "",
        ]
        if self._checkpoints:
            lines.append("=== Recovery Checkpoints ===")
            lines.append(f"{'TIMESTAMP':<20} {'CHECKPOINT':<30} DATA")
            lines.append("-" * 80)
            for cp in self._checkpoints:
                ts = cp.timestamp.strftime('%Y-%m-%d %H:%M:%S')
                data = '' if cp.payload is None else cp.payload
                lines.append(f"{ts:<20} {cp.name:<30} {data}".rstrip())

        lines += ["", "=== Recovery Log ==="]
        if self.log_path and self.log_path.is_file():
            lines.append(self.log_path.read_text(encoding="utf-8").rstrip("\n"))
        else:
            lines.extend(self._log_lines)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.info("Recovery report generated: %s", path)
        return path

    def cleanup(self) -> None:
        """Delete the recovery log, forget checkpoints and return to CLEAN."""
        if self.log_path and self.log_path.exists():
            logger.debug("Cleaning up recovery log: %s", self.log_path)
            self.log_path.unlink()
        self._checkpoints = []
        self._rollbacks = {}
        self.state = RecoveryState.CLEAN

    # Presets for the external tools cpc drives

    def network_operation(self, command: Command, name: str, timeout_seconds: Optional[float] = None) -> int:
        def rollback() -> None:
            logger.info("Network operation %s failed, no rollback needed", name)

        return self.execute(Operation(
            command=command,
            name=name,
            timeout_seconds=timeout_seconds or self.config.NETWORK_TIMEOUT,
            retry_policy=NETWORK_POLICY,
            rollback=rollback,
        ))

    def ansible_operation(self, command: Command, playbook_name: str,
                          timeout_seconds: Optional[float] = None) -> int:
        def rollback() -> None:
            logger.warning("Ansible playbook %s failed, manual cleanup may be needed", playbook_name)

        return self.execute(Operation(
            command=command,
            name=f"ansible_{playbook_name}",
            timeout_seconds=timeout_seconds or self.config.ANSIBLE_TIMEOUT,
            retry_policy=ANSIBLE_POLICY,
            rollback=rollback,
            cleanup=ansible_cleanup(),
        ))

    def k8s_operation(self, command: Command, name: str, resource_type: Optional[str] = None,
                      resource_name: Optional[str] = None, timeout_seconds: Optional[float] = None) -> int:
        """Run a kubectl command; on failure delete the resource it was creating, if named."""
        rollback = None
        if resource_type and resource_name:
            rollback = Command.of("kubectl", "delete", resource_type, resource_name, "--ignore-not-found=true")
        return self.execute(Operation(
            command=command,
            name=f"k8s_{name}",
            timeout_seconds=timeout_seconds or self.config.KUBECTL_TIMEOUT,
            rollback=rollback,
        ))

    def _roll_back(self, name: str, rollback: Optional[Action]) -> None:
        logger.warning("Attempting recovery for operation: %s", name)
        if rollback is None:
            logger.warning("No rollback command provided for %s", name)
            return

        logger.info("Executing rollback: %s", describe_action(rollback))
        exit_code = run_action(rollback)
        if exit_code == 0:
            logger.info("Rollback completed successfully")
            self.state = RecoveryState.RECOVERED
            self.checkpoint(f"rollback_{name}", f"rolled_back_{name}")
        else:
            self.state = RecoveryState.FAILED
            self.errors.push(ErrorCode.EXECUTION, f"Rollback of {name} failed (exit code: {exit_code})",
                             Severity.HIGH, context=describe_action(rollback))

    def _log(self, line: str) -> None:
        self._log_lines.append(line)
        if self.log_path:
            try:
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                logger.debug("Cannot append to recovery log %s: %s", self.log_path, e)

