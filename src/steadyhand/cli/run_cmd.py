"""CLI commands that drive a browser session: ``run`` and ``actions``."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

console = Console()

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"


def configure_logging(level: str) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )
    # Quieten noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_params(raw: str | None) -> dict[str, Any]:
    """Parse the ``--params`` JSON object."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"--params is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise typer.BadParameter("--params must be a JSON object")
    return value


async def _run(url: str, action: str, params: dict[str, Any], *, headless: bool, events: bool) -> dict[str, Any]:
    from steadyhand.browser.session import BrowserSession
    from steadyhand.dispatcher import Dispatcher
    from steadyhand.monitoring import JsonlSink, LoggingSink, ProgressNotifier
    from steadyhand.settings import get_settings

    settings = get_settings()
    notifier = ProgressNotifier([LoggingSink()])
    if events:
        notifier.add_sink(JsonlSink(sys.stderr))

    session = BrowserSession(settings.browser)
    await session.start(headless=headless)
    try:
        dispatcher = Dispatcher(session, settings=settings, notifier=notifier)
        results: dict[str, Any] = {}
        nav = await dispatcher.execute("navigate", {"url": url})
        results["navigate"] = nav.to_dict()
        if nav.success and action != "navigate":
            result = await dispatcher.execute(action, params)
            results[action] = result.to_dict()
        return results
    finally:
        await session.close()


def register_run_commands(app: typer.Typer) -> None:
    """Attach ``run`` and ``actions`` to *app*."""

    @app.command("run")
    def run(
        url: str = typer.Argument(..., help="Page to open before running the action."),
        action: str = typer.Argument("navigate", help="Action name (see `steadyhand actions`)."),
        params: Optional[str] = typer.Option(None, "--params", "-p", help="Action parameters as a JSON object."),
        headed: bool = typer.Option(False, "--headed", help="Show the browser window."),
        events: bool = typer.Option(False, "--events", help="Stream progress events as JSONL to stderr."),
    ) -> None:
        """Open URL in a fresh browser, run one action and print the result."""
        from steadyhand.settings import get_settings

        settings = get_settings()
        configure_logging("DEBUG" if settings.debug else settings.log_level)
        parsed = parse_params(params)

        results = asyncio.run(_run(url, action, parsed, headless=settings.browser.headless and not headed, events=events))
        console.print_json(json.dumps(results, default=str))
        if not all(r.get("success") for r in results.values()):
            raise typer.Exit(code=1)

    @app.command("actions")
    def list_actions() -> None:
        """List registered actions and their parameters."""
        from steadyhand.browser.handlers import ACTIONS

        table = Table(title="Actions")
        table.add_column("Action", style="cyan")
        table.add_column("Parameters")
        table.add_column("Description")
        for name, spec in sorted(ACTIONS.items()):
            fields = ", ".join(
                f"{field}{'' if info.is_required() else '?'}" for field, info in spec.params_model.model_fields.items()
            )
            table.add_row(name, fields or "-", spec.description)
        console.print(table)
