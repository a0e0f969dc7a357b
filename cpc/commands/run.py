import os
import typer
from typing import List, Optional

from cpc.commands import session_from
from cpc.core import Command, CommandError, Operation, RetryPolicy, RecoveryState, retry_on_exit_codes


def run_operation(
    ctx: typer.Context,
    command: List[str] = typer.Argument(..., help="Command and arguments to run (put them after --)"),
    name: Optional[str] = typer.Option(None, help="Operation name used in logs and checkpoints"),
    timeout: Optional[float] = typer.Option(None, help="Seconds before the command is killed [default: timeouts.command]"),
    retries: Optional[int] = typer.Option(None, help="Retries after the first failed attempt [default: retry.max_retries]"),
    base_delay: Optional[float] = typer.Option(None, help="Delay after the first failure [default: retry.base_delay]"),
    max_delay: Optional[float] = typer.Option(None, help="Upper bound for the retry delay [default: retry.max_delay]"),
    retry_on: Optional[List[int]] = typer.Option(None, "--retry-on", help="Only retry on these exit codes"),
    validate: Optional[str] = typer.Option(None, help="Command that must succeed after the operation"),
    rollback: Optional[str] = typer.Option(None, help="Command run when the operation fails"),
    cleanup: Optional[str] = typer.Option(None, help="Command run when the operation times out"),
    progress: float = typer.Option(0, help="Report progress every N seconds (0 disables)"),
    report_dir: Optional[str] = typer.Option(None, help="Write error and recovery reports to this directory"),
):
    """Run a command with timeout, retries, validation and rollback."""
    # unset options fall back to the session config, which includes --config overrides
    session = session_from(ctx)
    config = session.config
    try:
        operation = Operation(
            command=Command(tuple(command)),
            name=name or os.path.basename(command[0]),
            timeout_seconds=timeout if timeout is not None else config.COMMAND_TIMEOUT,
            retry_policy=RetryPolicy(
                max_retries=retries if retries is not None else config.MAX_RETRIES,
                base_delay=base_delay if base_delay is not None else config.RETRY_BASE_DELAY,
                max_delay=max_delay if max_delay is not None else config.RETRY_MAX_DELAY,
                backoff_multiplier=config.RETRY_BACKOFF_MULTIPLIER,
                retry_condition=retry_on_exit_codes(*retry_on) if retry_on else None,
            ),
            validation=Command.parse(validate) if validate else None,
            rollback=Command.parse(rollback) if rollback else None,
            cleanup=Command.parse(cleanup) if cleanup else None,
            progress_interval=progress or None,
        )
    except (CommandError, ValueError) as e:
        typer.echo(f"❌ {e}", err=True)
        session.recovery.cleanup()
        raise typer.Exit(code=2)

    exit_code = session.execute(operation)
    state = session.recovery.state

    if exit_code == 0:
        typer.echo(f"✅ {operation.name} succeeded")
    elif state is RecoveryState.RECOVERED:
        typer.echo(f"⚠️  {operation.name} failed (exit code {exit_code}), rollback completed")
    else:
        typer.echo(f"❌ {operation.name} failed (exit code {exit_code}), state: {state.value}")

    if report_dir:
        session.write_reports(report_dir)
        typer.echo(f"📄 Reports written to {report_dir}")
    session.recovery.cleanup()

    if exit_code != 0:
        raise typer.Exit(code=exit_code)
