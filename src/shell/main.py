"""Entry point CLI for the tea-ordering client.

Usage examples::

    chagee --region SG --mode dry-run -c status
    chagee --yolo --mode live -c "order create"
    chagee --json -c "region list" -c status
    chagee "/status"
    chagee                      # line REPL on stdin
"""

from __future__ import annotations

import sys
from typing import Optional, TextIO, Tuple

import click

from common.config import log_json, log_level
from common.logging_config import configure_logging
from state.session_store import SessionStoreError

from . import __version__
from .app import App


def run_repl(app: App, stream: Optional[TextIO] = None) -> None:
    """Read commands line by line until EOF or `exit`."""
    stream = stream or sys.stdin
    interactive = stream.isatty()
    while True:
        if interactive:
            click.echo("chagee> ", nl=False)
        line = stream.readline()
        if not line:
            break
        if app.execute(line):
            break


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--json", "json_output", is_flag=True, help="Enable JSON output before running commands.")
@click.option("--mode", type=click.Choice(["dry-run", "live"]), default=None, help="Set mode before running commands.")
@click.option("--region", default=None, help="Set region before running commands.")
@click.option("--yolo", is_flag=True, help="Enable live order create/cancel (unsafe).")
@click.option("-c", "--command", "commands", multiple=True, help="Run a command once (repeatable).")
@click.option("--log-level", "log_level_opt", default=None, help="Log level for stderr diagnostics (default: CHAGEE_LOG_LEVEL or WARNING).")
@click.version_option(__version__, "-v", "--version", prog_name="chagee")
@click.argument("words", nargs=-1)
def main(
    json_output: bool,
    mode: Optional[str],
    region: Optional[str],
    yolo: bool,
    commands: Tuple[str, ...],
    log_level_opt: Optional[str],
    words: Tuple[str, ...],
) -> None:
    """chagee - tea-ordering CLI.

    Runs each -c command (and any positional command words) once, then exits.
    Without commands, reads commands from stdin.
    """
    configure_logging(log_level_opt or log_level(), format_json=log_json())

    app = App(yolo=yolo)
    app.init()
    if region:
        app.execute(f"region set {region}")
    if mode:
        app.execute(f"mode {mode}")
    if json_output:
        app.execute("json on")

    queued = list(commands)
    if words:
        queued.append(" ".join(words))

    try:
        if queued:
            for line in queued:
                if app.execute(line):
                    break
        else:
            run_repl(app)
    finally:
        try:
            app.shutdown()
        except SessionStoreError as exc:
            click.echo(f"error: {exc}", err=True)
            sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
