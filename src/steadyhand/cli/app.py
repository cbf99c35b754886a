"""Unified CLI entry point for steadyhand.

Config precedence: settings.default.toml -> settings.{env}.toml -> settings.local.toml -> env vars (STEADYHAND_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import typer

from steadyhand.cli.run_cmd import register_run_commands
from steadyhand.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("steadyhand")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "steadyhand — run browser actions with locator healing, CAPTCHA solving and stream extraction. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (STEADYHAND_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.add_typer(settings_app, name="settings")
register_run_commands(app)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context, version: bool = typer.Option(False, "--version", help="Show version and exit.")) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"steadyhand {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
