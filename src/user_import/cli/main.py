"""
Main CLI entry point for the user import tool.

This module provides the command-line interface for importing users from an
external identity provider into a tenant's user store.
"""

import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from user_import import __version__
from user_import.cli.commands import importing
from user_import.cli.context import ImportContext
from user_import.utils.logging import configure_logging, get_logger

# Load environment variables from .env file
load_dotenv()

logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__, prog_name="user-import")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
    envvar="USER_IMPORT_CONFIG",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    help="Set console logging level (file logging stays at DEBUG)",
    envvar="USER_IMPORT_LOG_LEVEL",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    help="Log file path (default: logs/user_import.log)",
    envvar="USER_IMPORT_LOG_FILE",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path | None,
    log_level: str,
    log_file: Path | None,
) -> None:
    """User Import - move users from an external identity provider into a tenant.

    Passwords are never copied; every imported user must reset theirs.

    Examples:

        # Check the source credential
        user-import validate --url https://xyz.supabase.co --credential $KEY

        # Preview and import
        user-import run --tenant acme --url https://xyz.supabase.co

        # Resume a failed import
        user-import resume SESSION_ID

        # Download the error report
        user-import export-errors SESSION_ID -o errors.csv
    """
    effective_log_file = Path(log_file) if log_file else Path("logs/user_import.log")
    effective_log_file.parent.mkdir(parents=True, exist_ok=True)

    configure_logging(level=log_level, log_file=str(effective_log_file))

    ctx.obj = ImportContext(
        config_path=config,
        log_level=log_level,
        log_file=log_file,
    )

    logger.debug(
        "CLI initialized",
        config=str(config) if config else None,
        log_level=log_level,
    )


cli.add_command(importing.validate)
cli.add_command(importing.preview)
cli.add_command(importing.run)
cli.add_command(importing.resume)
cli.add_command(importing.status)
cli.add_command(importing.export_errors)


def main() -> int:
    """Main entry point for CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.exceptions.Exit as e:
        return e.exit_code
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except click.exceptions.Abort:
        click.echo("Aborted!", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
