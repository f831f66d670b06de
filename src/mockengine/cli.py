"""Mock engine CLI (mockengine).

Usage:
    mockengine replay scenario.yaml          # Replay a scenario, one JSON line per step
    mockengine urn aws:s3/bucket:Bucket logs # Print the URN a resource would get
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

import click

from . import __version__, settings
from .config import ConfigurationError, MockConfig
from .scenario import ScenarioLoadError, load_scenario, run_scenario
from .urn import InvalidUrnError, new_urn

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "WARNING") -> None:
    """Configure structured JSON logging on stderr.

    stdout is reserved for command output.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="mockengine")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Minimum level of JSON log lines written to stderr.",
)
def cli(log_level: str) -> None:
    """Mock engine CLI (mockengine).

    Replays engine protocol traffic against declarative mocks.
    """
    setup_logging(log_level)


@cli.command()
@click.argument("scenario_file", type=click.Path(path_type=Path))
def replay(scenario_file: Path) -> None:
    """Replay a YAML scenario and print each step's outcome."""
    try:
        scenario = load_scenario(scenario_file)
        outcomes = asyncio.run(run_scenario(scenario))
    except (ScenarioLoadError, ConfigurationError) as e:
        raise click.ClickException(str(e)) from e
    finally:
        settings.reset()

    for outcome in outcomes:
        click.echo(json.dumps(outcome.to_dict(), default=str))

    mismatched = [o for o in outcomes if not o.expected]
    if mismatched:
        click.secho(
            f"{len(mismatched)} of {len(outcomes)} steps did not match expectations",
            fg="red",
            err=True,
        )
        sys.exit(1)


@cli.command()
@click.argument("type_token")
@click.argument("name")
@click.option("--parent", default=None, help="URN of the parent resource.")
@click.option("--project", default=None, help="Project name (default: project).")
@click.option("--stack", default=None, help="Stack name (default: stack).")
def urn(
    type_token: str,
    name: str,
    parent: str | None,
    project: str | None,
    stack: str | None,
) -> None:
    """Print the URN a resource would be registered under."""
    try:
        config = MockConfig.create(project=project, stack=stack)
        click.echo(new_urn(config.stack, config.project, type_token, name, parent=parent))
    except (ConfigurationError, InvalidUrnError) as e:
        raise click.ClickException(str(e)) from e


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
