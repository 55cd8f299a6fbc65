"""
SKConfig CLI -- one sync cycle per invocation.

Meant to be run by a timer or service manager; every run is
independent and safe to repeat.

Entry point: skconfig.cli:main
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console

from . import SKConfigError, __version__
from .agent import Agent
from .extract import ExtractReport
from .models import AgentSettings, SyncOutcome
from .transport import TransportConfigError

console = Console(stderr=True)
logger = logging.getLogger("skconfig.cli")

EXIT_ERROR = 1
EXIT_CONFIG = 2


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _build_agent(
    config: Optional[str],
    sota_dir: Optional[str],
    secrets_dir: Optional[str],
    url: Optional[str] = None,
    testing: bool = False,
) -> Agent:
    """Resolve settings and construct the agent, exiting on bad config."""
    try:
        settings = AgentSettings.load(
            Path(config) if config else None,
            sota_dir=sota_dir,
            secrets_dir=secrets_dir,
            config_url=url,
        )
        return Agent.from_settings(settings, testing=testing)
    except (TransportConfigError, ValueError, OSError, yaml.YAMLError) as exc:
        console.print(f"[bold red]Configuration error:[/] {exc}")
        sys.exit(EXIT_CONFIG)


def _print_report(report: ExtractReport) -> None:
    for name in report.updated:
        console.print(f"  [green]updated[/]   {name}")
    for name in report.unchanged:
        console.print(f"  [dim]unchanged {name}[/]")
    for name in report.failed_hooks:
        console.print(f"  [yellow]hook failed[/] {name}")


_common_options = [
    click.option("--config", "config", type=click.Path(dir_okay=False),
                 help="YAML settings file."),
    click.option("--sota-dir", type=click.Path(file_okay=False),
                 help="Directory with client.pem, pkey.pem, root.crt."),
    click.option("--secrets-dir", type=click.Path(file_okay=False),
                 help="Directory to write secret files into."),
    click.option("-v", "--verbose", is_flag=True, help="Debug logging."),
]


def common_options(func):
    for option in reversed(_common_options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="skconfig")
def main():
    """SKConfig -- device configuration sync agent.

    Pulls the encrypted config bundle over mutual TLS and keeps the
    secret files on this device in step with it.
    """


@main.command("check-in")
@common_options
@click.option("--url", help="Config server endpoint (default: $CONFIG_URL).")
def check_in(config, sota_dir, secrets_dir, verbose, url):
    """Fetch the config bundle if it changed and extract it."""
    _setup_logging(verbose)
    agent = _build_agent(config, sota_dir, secrets_dir, url=url)

    try:
        outcome = agent.check_in()
    except (SKConfigError, OSError) as exc:
        logger.error("Check-in failed: %s", exc)
        console.print(f"[bold red]Check-in failed:[/] {exc}")
        sys.exit(EXIT_ERROR)

    if outcome == SyncOutcome.UPDATED:
        console.print("[green]Config updated[/]")
    else:
        console.print("[dim]Config unchanged[/]")


@main.command("extract")
@common_options
@click.option("--testing", is_flag=True,
              help="Only load pkey.pem; no TLS material required.")
def extract_cmd(config, sota_dir, secrets_dir, verbose, testing):
    """Decrypt the persisted bundle and write out the secrets."""
    _setup_logging(verbose)
    agent = _build_agent(config, sota_dir, secrets_dir, testing=testing)

    try:
        report = agent.extract()
    except (SKConfigError, OSError) as exc:
        logger.error("Extract failed: %s", exc)
        console.print(f"[bold red]Extract failed:[/] {exc}")
        sys.exit(EXIT_ERROR)

    _print_report(report)
