"""Structured commands spawned directly, never through a shell."""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .exceptions import CommandError

logger = logging.getLogger("cpc.command")

EXIT_TIMEOUT = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
# shell convention for a child killed by signal N
EXIT_SIGNAL_BASE = 128


@dataclass(frozen=True)
class Command:
    """An argument list plus optional environment overrides and working directory."""
    argv: Tuple[str, ...]
    env: Optional[Mapping[str, str]] = None
    cwd: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.argv, str):
            raise CommandError("argv must be a sequence of arguments, use Command.parse() for a string")
        argv = tuple(str(arg) for arg in self.argv)
        if not argv or not argv[0]:
            raise CommandError("Command requires at least a program name")
        object.__setattr__(self, 'argv', argv)
        if self.cwd is not None:
            object.__setattr__(self, 'cwd', os.fspath(self.cwd))

    @classmethod
    def of(cls, *argv: Any, env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None) -> 'Command':
        """Build a command from positional arguments."""
        return cls(tuple(argv), env=env, cwd=cwd)

    @classmethod
    def parse(cls, text: str, env: Optional[Mapping[str, str]] = None, cwd: Optional[str] = None) -> 'Command':
        """Split a command line with POSIX shell quoting rules.

        The string is only tokenised; pipes, redirections and variable
        expansion are not interpreted.
        """
        try:
            argv = shlex.split(text)
        except ValueError as e:
            raise CommandError(f"Cannot parse command {text!r}: {e}") from e
        return cls(tuple(argv), env=env, cwd=cwd)

    @property
    def program(self) -> str:
        return self.argv[0]

    def environment(self) -> Optional[Dict[str, str]]:
        """Parent environment with this command's overrides applied, or None to inherit."""
        if not self.env:
            return None
        merged = dict(os.environ)
        merged.update({k: str(v) for k, v in self.env.items()})
        return merged

    def popen(self, **kwargs: Any) -> subprocess.Popen:
        """Spawn the command. Extra keyword arguments go to subprocess.Popen."""
        return subprocess.Popen(
            list(self.argv),
            env=self.environment(),
            cwd=self.cwd,
            **kwargs
        )

    def __str__(self) -> str:
        return shlex.join(self.argv)


def as_command(value: Any) -> Command:
    """Coerce a Command, a command line string or an argument sequence into a Command."""
    if isinstance(value, Command):
        return value
    if isinstance(value, str):
        return Command.parse(value)
    if isinstance(value, Sequence):
        return Command(tuple(value))
    raise CommandError(f"Cannot build a command from {type(value).__name__}")


def exit_status(returncode: int) -> int:
    """Map a Popen returncode to a shell-style exit status (-N becomes 128 + N)."""
    if returncode < 0:
        return EXIT_SIGNAL_BASE - returncode
    return returncode


def describe_action(action: Any) -> str:
    if isinstance(action, Command):
        return str(action)
    return getattr(action, '__name__', repr(action))


def run_action(action: Any, timeout: Optional[float] = None) -> int:
    """Run a Command or a Python callable and return an exit status.

    Args:
        action: Command to spawn, or a callable taking no arguments
        timeout: Optional limit for spawned commands, in seconds

    Returns:
        int: 0 on success. Callables returning True or None map to 0,
        False maps to 1, an int is returned unchanged and a raised
        exception maps to 1.
    """
    if isinstance(action, Command):
        logger.debug("Running: %s", action)
        try:
            completed = subprocess.run(
                list(action.argv),
                env=action.environment(),
                cwd=action.cwd,
                timeout=timeout,
                check=False
            )
        except FileNotFoundError:
            logger.error("Command not found: %s", action.program)
            return EXIT_NOT_FOUND
        except PermissionError:
            logger.error("Command not executable: %s", action.program)
            return EXIT_NOT_EXECUTABLE
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %ss", action, timeout)
            return EXIT_TIMEOUT
        return exit_status(completed.returncode)

    if not callable(action):
        raise CommandError(f"Not a runnable action: {action!r}")

    try:
        result = action()
    except Exception as e:
        logger.warning("Action %s raised %s: %s", describe_action(action), type(e).__name__, e,
                       exc_info=logger.isEnabledFor(logging.DEBUG))
        return 1
    if result is None or result is True:
        return 0
    if result is False:
        return 1
    if isinstance(result, int):
        return result
    return 0 if result else 1
