"""plugin-bridge command line interface."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, manifest_path, watch_lock_path
from .config import BridgeConfig
from .exceptions import BridgeError
from .logging_config import (
    PRIMARY_LOG_FILENAME,
    enable_console_logging,
    setup_logger,
    use_codex_home_log_directory,
)
from .manifest import load_manifest
from .runner import BridgeRunner
from .watch_lock import is_process_alive, read_lock_pid

logger = setup_logger("plugin_bridge.cli", PRIMARY_LOG_FILENAME)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Run Claude plugin hooks for Codex sessions.",
    add_completion=False,
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"plugin-bridge {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """Codex plugin bridge."""


@app.command("run")
def run_command(
    watch: bool = typer.Option(False, "--watch", help="Keep polling session files until stopped"),
    emit_stop: bool = typer.Option(
        False, "--emit-stop", help="Dispatch a synthetic Stop event after the pass"
    ),
    codex_home: Optional[Path] = typer.Option(
        None, "--codex-home", help="Codex home (default: $CODEX_HOME or ~/.codex)"
    ),
    project_root: Optional[Path] = typer.Option(
        None, "--project-root", help="Project root exported to hooks and used as watch scope"
    ),
    since: Optional[float] = typer.Option(
        None, "--since", help="Ignore events timestamped before this epoch second"
    ),
    poll_ms: Optional[int] = typer.Option(
        None, "--poll-ms", help="Watch poll interval in ms (minimum 200, default 600)"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show hook output and log to stderr"),
    debug_log: Optional[bool] = typer.Option(
        None, "--debug-log/--no-debug-log", help="Write the JSONL debug trace"
    ),
    debug_log_path: Optional[Path] = typer.Option(
        None, "--debug-log-path", help="Debug trace path (implies --debug-log)"
    ),
) -> None:
    """Tail Codex session logs and run matching plugin hooks."""
    try:
        config = BridgeConfig.load(
            codex_home=codex_home,
            project_root=project_root,
            since=since,
            watch=watch,
            emit_stop=emit_stop,
            poll_ms=poll_ms,
            verbose=verbose or None,
            debug_log=True if debug_log_path and debug_log is None else debug_log,
            debug_log_path=debug_log_path,
        )
        if codex_home:
            use_codex_home_log_directory(config.codex_home)
        if not config.quiet:
            enable_console_logging()
        runner = BridgeRunner(config)
        runner.run()
    except BridgeError as e:
        logger.error(f"Bridge failed: {e}")
        err_console.print(f"[red]plugin-bridge failed:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.error(f"Bridge failed: {e}", exc_info=True)
        err_console.print(f"[red]plugin-bridge failed:[/red] {e}")
        raise typer.Exit(1)


@app.command("status")
def status_command(
    codex_home: Optional[Path] = typer.Option(
        None, "--codex-home", help="Codex home (default: $CODEX_HOME or ~/.codex)"
    ),
) -> None:
    """Show manifest, watch lock and debug log state."""
    try:
        config = BridgeConfig.load(codex_home=codex_home)
        manifest = load_manifest(manifest_path(config.codex_home))
    except BridgeError as e:
        err_console.print(f"[red]plugin-bridge status failed:[/red] {e}")
        raise typer.Exit(1)

    lock_path = watch_lock_path(config.codex_home)
    if lock_path.exists():
        pid = read_lock_pid(lock_path)
        if is_process_alive(pid):
            lock_text = f"[green]held[/green] by pid {pid}"
        else:
            lock_text = f"[yellow]stale[/yellow] (pid {pid if pid is not None else '?'})"
    else:
        lock_text = "[dim]free[/dim]"

    table = Table(title="Codex plugin bridge", show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Value")
    table.add_row("Codex home", str(config.codex_home))
    manifest_state = "" if manifest.path.exists() else " [yellow](missing)[/yellow]"
    table.add_row("Manifest", f"{manifest.path}{manifest_state}")
    table.add_row("Plugin sources", str(len(manifest.plugins)))
    table.add_row("Top-level sources", str(len(manifest.top_hooks)))
    table.add_row("Rules", str(sum(len(s.rules) for s in manifest.sources)))
    table.add_row("Watch lock", f"{lock_path}: {lock_text}")
    table.add_row(
        "Debug log", str(config.debug_log_path) if config.debug_log_path else "[dim]disabled[/dim]"
    )
    console.print(table)


if __name__ == "__main__":
    app()
