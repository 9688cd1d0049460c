"""CLI commands for running the mender pipelines."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml
from dotenv import load_dotenv

from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    MenderConfig,
    default_config_data,
    load_config,
)
from .models import LLMClient, ResponsesClient
from .pipelines import FixCoveragePipeline, FixTestsPipeline, PipelineResult

APP_HELP = "Fix failing tests and raise coverage with model-generated code."

app = typer.Typer(help=APP_HELP)

LOGGER = logging.getLogger(__name__)

DEFAULT_ENV_NAME = ".env"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@app.callback()
def main(
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        "-l",
        help="Logging level for progress output (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Configure logging and load ./.env before running a command."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}", param_hint="--log-level")
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    env_file = Path.cwd() / DEFAULT_ENV_NAME
    if env_file.is_file():
        # Variables already set in the process environment take precedence.
        load_dotenv(env_file, override=False)
        LOGGER.debug("Loaded environment from %s", env_file)


def _resolve_config_path(config: Optional[Path]) -> Optional[Path]:
    """Return the explicit config path, or the default file when it exists."""
    if config is not None:
        return config
    default_path = Path(DEFAULT_CONFIG_NAME)
    return default_path if default_path.exists() else None


def _load(config: Optional[Path], overrides: Dict[str, Dict[str, Any]]) -> MenderConfig:
    try:
        return load_config(_resolve_config_path(config), overrides=overrides)
    except ConfigError as error:
        typer.echo(f"Invalid configuration: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: MenderConfig) -> LLMClient:
    """Construct the Responses API client from configuration."""
    settings = config.models
    try:
        return ResponsesClient(
            api_key=settings.api_key,
            base_url=settings.base_url,
            model=settings.name,
            timeout=settings.timeout,
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
        )
    except ValueError as error:
        message = str(error)
        if "api key" in message.lower():
            typer.echo("No API key given. Set MENDER_API_KEY or OPENAI_API_KEY, or models.api_key in the config.")
        else:
            typer.echo(f"Failed to initialise model client: {error}")
        raise typer.Exit(code=1) from error


def _render_result(result: PipelineResult) -> None:
    for item in result.items:
        status = "ok" if item.success else "failed"
        line = f"- {item.file_path} -> {status} ({item.state.value}, {item.attempts} attempt(s))"
        if item.test_file_path and item.test_file_path != item.file_path:
            line = f"{line} [{item.test_file_path}]"
        typer.echo(line)
        if item.error:
            typer.echo(f"    ! {item.error}")
    typer.echo(result.summary)


ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help=f"Path to a YAML configuration file (defaults to ./{DEFAULT_CONFIG_NAME} when present).",
)
TargetOption = typer.Option(
    None,
    "--target",
    "-t",
    help="Target repository root (overrides target.root / TARGET_FOLDER).",
)


@app.command("fix-tests")
def fix_tests(
    config: Optional[Path] = ConfigOption,
    target: Optional[Path] = TargetOption,
    test_command: Optional[str] = typer.Option(
        None,
        "--test-command",
        help="Shell command that runs the test suite (overrides target.test_command / TEST_SCRIPT).",
    ),
    max_attempts: Optional[int] = typer.Option(
        None,
        "--max-attempts",
        min=1,
        help="Fix attempts per failing test file.",
    ),
) -> None:
    """Run the test suite and repair failing test files."""
    settings = _load(
        config,
        {
            "target": {"root": str(target) if target else None, "test_command": test_command},
            "retry": {"test_max_attempts": max_attempts},
        },
    )
    client = _build_client(settings)
    typer.echo(f"mender initialized; fixing failing tests in {settings.target_root}")
    result = FixTestsPipeline(client=client, config=settings).run()
    _render_result(result)
    typer.echo("Test fix run complete.")


@app.command("fix-coverage")
def fix_coverage(
    config: Optional[Path] = ConfigOption,
    target: Optional[Path] = TargetOption,
    coverage_command: Optional[str] = typer.Option(
        None,
        "--coverage-command",
        help="Shell command that prints a coverage report (overrides target.coverage_command / COVERAGE_SCRIPT).",
    ),
    threshold: Optional[float] = typer.Option(
        None,
        "--threshold",
        min=0,
        max=100,
        help="Coverage percentage every file should reach (default 100).",
    ),
    max_attempts: Optional[int] = typer.Option(
        None,
        "--max-attempts",
        min=1,
        help="Test generation attempts per low-coverage file.",
    ),
) -> None:
    """Run the coverage command and generate tests for low-coverage files."""
    settings = _load(
        config,
        {
            "target": {
                "root": str(target) if target else None,
                "coverage_command": coverage_command,
                "coverage_threshold": threshold,
            },
            "retry": {"coverage_max_attempts": max_attempts},
        },
    )
    client = _build_client(settings)
    typer.echo(f"mender initialized; improving coverage in {settings.target_root}")
    result = FixCoveragePipeline(client=client, config=settings).run()
    _render_result(result)
    typer.echo("Coverage fix run complete.")


@app.command()
def init(
    path: Path = typer.Argument(Path(DEFAULT_CONFIG_NAME), help="Where to write the configuration file."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a configuration file populated with the defaults."""
    if path.exists() and not force:
        typer.echo(f"{path} already exists; pass --force to overwrite it.")
        raise typer.Exit(code=1)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(default_config_data(), handle, sort_keys=False)
    typer.echo(f"Wrote default configuration to {path}.")


if __name__ == "__main__":
    app()
