import typer
from typing import List, Optional

from cpc.commands import session_from
from cpc.core import ErrorAction

REQUIRED_TOOLS = {
    "tofu": "https://opentofu.org/docs/intro/install/",
    "ansible-playbook": "pip install ansible",
    "kubectl": "https://kubernetes.io/docs/tasks/tools/",
    "ssh": "install the OpenSSH client",
}


def doctor(
    ctx: typer.Context,
    tools: Optional[List[str]] = typer.Argument(None, help="Tools to check (default: tofu, ansible-playbook, kubectl, ssh)"),
    host: Optional[List[str]] = typer.Option(None, "--host", help="HOST[:PORT] that must be reachable"),
    report: Optional[str] = typer.Option(None, help="Write an error report to this file"),
):
    """Check that the external tools and hosts cpc depends on are available."""
    session = session_from(ctx)
    errors = session.errors
    problems = 0

    for tool in tools or list(REQUIRED_TOOLS):
        if errors.validate_command_exists(tool, REQUIRED_TOOLS.get(tool, ""), action=ErrorAction.WARN):
            typer.echo(f"✅ {tool}")
        else:
            typer.echo(f"❌ {tool} not found")
            problems += 1

    for target in host or []:
        hostname, _, port = target.partition(":")
        if port and not port.isdigit():
            typer.echo(f"❌ Invalid port in {target}", err=True)
            raise typer.Exit(code=2)
        if errors.validate_network(hostname, int(port) if port else None):
            typer.echo(f"✅ {target} reachable")
        else:
            typer.echo(f"❌ {target} unreachable")
            problems += 1

    if report:
        errors.report(report)
        typer.echo(f"📄 Error report written to {report}")

    if problems:
        typer.echo(f"⚠️  {problems} problem(s) found")
        raise typer.Exit(code=1)
    typer.echo("🎉 All checks passed")
