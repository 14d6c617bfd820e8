"""dataport CLI: run connectors end to end and inspect them.

Usage:
    dataport run module.path:ConnectorClass            # Headed run
    dataport run module.path:ConnectorClass --headless
    dataport run ... --url https://example.com --output out.json
    dataport inspect module.path:ConnectorClass        # Show connector metadata
    dataport worker                                    # Serve the worker protocol
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

import click
from typing_extensions import assert_never

from dataport.common.exceptions import ConnectorError, ProtocolError, WorkerNotFound
from dataport.connector import BaseConnector, load_connector
from dataport.data_types import RunRequest
from dataport.orchestrator import Orchestrator, RunOutcome, locate_worker
from dataport.protocol.messages import (
    DEBUG_MARKER,
    ControlMessage,
    DataMessage,
    ErrorMessage,
    LogMessage,
    NetworkCapturedMessage,
    ReadyMessage,
    ResultMessage,
    StatusMessage,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_OUTPUT = "connector-result.json"
RULE = "─" * 50


def import_connector(connector_ref: str) -> type[BaseConnector]:
    """Import a connector class, reporting failures as bad parameters.

    Raises:
        click.BadParameter: If the reference cannot be resolved.
    """
    try:
        return load_connector(connector_ref)
    except ConnectorError as e:
        raise click.BadParameter(e.message, param_hint="CONNECTOR") from e


# ------------------------------------------------------------------
# Message formatting
# ------------------------------------------------------------------


_STATUS_STYLES = {
    "COMPLETE": {"fg": "green", "bold": True},
    "ERROR": {"fg": "red", "bold": True},
    "STOPPED": {"fg": "yellow"},
}

_STATUS_PREFIXES = {
    "STARTED": ("STARTED", "blue"),
    "COLLECTING": ("COLLECTING", "yellow"),
    "WAITING_FOR_USER": ("WAITING", "magenta"),
}


def format_status(status: str | dict[str, Any]) -> str:
    """Render a status payload for the console."""
    if isinstance(status, str):
        style = _STATUS_STYLES.get(status, {"fg": "blue"})
        return click.style(status, **style)

    kind = str(status.get("type", ""))
    label, color = _STATUS_PREFIXES.get(kind, (kind, "blue"))
    detail = str(status.get("message", ""))

    phase = status.get("phase")
    if isinstance(phase, dict):
        detail += click.style(
            f" ({phase.get('step')}/{phase.get('total')} {phase.get('label', '')})",
            dim=True,
        )
    if status.get("count") is not None:
        detail += click.style(f" [{status['count']} items]", fg="cyan")

    return f"{click.style(label, fg=color)} {detail}"


def format_message(message: ControlMessage) -> str | None:
    """Render one protocol message as a console line, or None to skip."""
    match message:
        case ReadyMessage() | ResultMessage():
            return None
        case StatusMessage(status=status):
            return f"{click.style('[status]', fg='blue')} {format_status(status)}"
        case LogMessage(message=text, raw=True):
            return click.style(f"[runner] {text}", dim=True)
        case LogMessage(message=text):
            return f"{click.style('[log]   ', fg='bright_black')} {text}"
        case DataMessage(key=key, value=value):
            text = value if isinstance(value, str) else json.dumps(value)
            if message.is_debug:
                body = text[len(DEBUG_MARKER) :].strip()
                return f"{click.style('[debug] ', fg='yellow')} {body}"
            if key == "error":
                return f"{click.style('[error] ', fg='red')} {text}"
            return f"{click.style('[data]  ', fg='cyan')} {key} = {text}"
        case ErrorMessage(message=text):
            return f"{click.style('[ERROR] ', fg='red')} {text}"
        case NetworkCapturedMessage(key=key, url=url):
            return click.style(f"[net]    Captured: {key} ({url})", dim=True)
        case _:
            assert_never(message)  # type: ignore[arg-type]


def _echo_message(message: ControlMessage) -> None:
    line = format_message(message)
    if line is not None:
        click.echo(f"{click.style(time.strftime('%H:%M:%S'), dim=True)} {line}")


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


@click.group()
@click.version_option(package_name="dataport")
def cli() -> None:
    """dataport: logged-in data export runner."""


@cli.command()
@click.argument("connector")
@click.option(
    "--headless",
    is_flag=True,
    help="Run without a visible browser (default: headed).",
)
@click.option("--url", default=None, help="Override the connector's start URL.")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    default=DEFAULT_OUTPUT,
    show_default=True,
    help="Where to write the result JSON.",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def run(
    connector: str, headless: bool, url: str | None, output: str, verbose: bool
) -> None:
    """Run a connector in a worker process and save its result.

    CONNECTOR is a dotted import path in the form module.path:ClassName.

    \b
    Examples:
        dataport run dataport.demo.connector:BookshelfConnector
        dataport run my.connectors:GitHubConnector --headless -o github.json
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    connector_class = import_connector(connector)
    try:
        command = locate_worker()
    except WorkerNotFound as e:
        raise click.ClickException(str(e)) from e

    request = RunRequest(
        run_id=f"test-{int(time.time() * 1000)}",
        connector_ref=connector,
        initial_url=url or connector_class.connect_url or "about:blank",
        headless=headless,
        force_headed=not headless,
    )
    output_path = Path(output).resolve()

    name = connector_class.name or connector_class.__name__
    version = f" v{connector_class.version}" if connector_class.version else ""
    click.echo(click.style("Connector Test Runner", bold=True))
    click.echo(RULE)
    click.echo(f"  Connector: {connector}")
    click.echo(f"  Name:      {name}{version}")
    click.echo(f"  URL:       {request.initial_url}")
    click.echo(
        f"  Mode:      {'headless' if headless else 'headed (visible browser)'}"
    )
    click.echo(f"  Output:    {output_path}")
    click.echo(f"  Worker:    {' '.join(command)}")
    click.echo(RULE)

    try:
        outcome = asyncio.run(
            Orchestrator(command).run(request, on_message=_echo_message)
        )
    except ProtocolError as e:
        raise click.ClickException(str(e)) from e

    sys.exit(_finish(outcome, output_path))


def _finish(outcome: RunOutcome, output_path: Path) -> int:
    """Save the result and print the footer. Returns the exit code."""
    click.echo(RULE)

    if outcome.result is not None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(outcome.result, indent=2, ensure_ascii=False))
        size = output_path.stat().st_size / 1024
        click.echo(
            f"{click.style('[result]', fg='green')} Saved to {output_path} ({size:.1f} KB)"
        )
    else:
        click.echo(f"{click.style('[result]', fg='red')} No result data returned")

    if outcome.succeeded:
        click.echo(f"{click.style('Done', fg='green', bold=True)} in {outcome.elapsed:.1f}s")
        return 0

    code = outcome.exit_code if outcome.exit_code != 0 else 1
    click.echo(
        f"{click.style('Failed', fg='red', bold=True)} "
        f"(exit code {code}) in {outcome.elapsed:.1f}s"
    )
    if outcome.error:
        click.echo(f"  {outcome.error}")
    return code


@cli.command()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def worker(verbose: bool) -> None:
    """Serve the worker protocol on stdin/stdout."""
    from dataport.worker.worker import run_worker

    sys.exit(run_worker(logging.DEBUG if verbose else logging.INFO))


@cli.command()
@click.argument("connector")
def inspect(connector: str) -> None:
    """Show connector metadata and collection phases."""
    connector_class = import_connector(connector)
    meta = connector_class.metadata()

    click.echo(f"Class:     {connector_class.__name__}")
    click.echo(f"Platform:  {meta['platform']}")
    if meta["name"]:
        click.echo(f"Name:      {meta['name']}")
    if meta["version"]:
        click.echo(f"Version:   {meta['version']}")
    if meta["connect_url"]:
        click.echo(f"URL:       {meta['connect_url']}")
    if meta["login_url"] and meta["login_url"] != meta["connect_url"]:
        click.echo(f"Login URL: {meta['login_url']}")
    if meta["rate_limits"]:
        click.echo(f"Rate limits: {', '.join(meta['rate_limits'])}")
    if meta["empty_result_is_error"]:
        click.echo("Empty result: error")

    phases = connector_class().phases()
    click.echo(f"\nPhases ({len(phases)}):")
    for step, phase in enumerate(phases, start=1):
        tag = " [optional]" if phase.optional else ""
        click.echo(f"  {step}. {phase.scope} ({phase.label}){tag}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
