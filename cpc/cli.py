import typer
import logging
import sys
from typing import Optional
from cpc.config import Config
from cpc.logging import setup_logger
from cpc.commands import run, cache, doctor

app = typer.Typer(help="Create and manage a personal Kubernetes cluster.")

# Global debug flag
debug_mode = Config.DEBUG


# Configure logging
def setup_logging(debug_mode: bool = False):
    """Configure logging based on debug mode."""
    log_level = logging.DEBUG if debug_mode else logging.INFO
    logger = setup_logger("cpc", log_level)
    for handler in logger.handlers:
        handler.setLevel(log_level)


# Register commands
app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)(run.run_operation)
app.command("doctor")(doctor.doctor)
app.add_typer(cache.app, name="cache")


# Global options callback
@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(Config.DEBUG, "--debug", "-d", help="Enable debug logging"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML file overriding retry/timeout defaults"),
    test_mode: bool = typer.Option(Config.TEST_MODE, "--test-mode", help="Skip checks that need external tools"),
):
    """CPC - personal Kubernetes cluster orchestrator."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.getLogger("cpc").setLevel(logging.DEBUG)
        logging.getLogger("cpc").debug("Debug mode enabled")
    ctx.obj = {"config": config, "debug": debug, "test_mode": test_mode}


def entrypoint():
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.getLogger("cpc").error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.getLogger("cpc").error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    entrypoint()
