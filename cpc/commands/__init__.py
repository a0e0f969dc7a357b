import typer
from typing import Optional

from cpc.core import Session


def session_from(ctx: Optional[typer.Context]) -> Session:
    """Create a Session using the global CLI options stored on the context."""
    options = (ctx.obj if ctx is not None else None) or {}
    return Session.create(
        config_file=options.get("config"),
        debug=options.get("debug"),
        test_mode=options.get("test_mode"),
    )


__all__ = ['session_from']
