"""
Decorators for CLI commands.

This module provides decorators for error handling and context passing.
"""

import functools
from collections.abc import Callable

import click

from user_import.cli.context import ImportContext
from user_import.client.exceptions import (
    APIError,
    ConfigurationError,
    InvalidCredentialError,
    SourceError,
    StateError,
)
from user_import.utils.logging import get_logger

logger = get_logger(__name__)


def pass_context(f: Callable) -> Callable:
    """
    Decorator to pass ImportContext to command function.

    Usage:
        @click.command()
        @pass_context
        def my_command(ctx: ImportContext):
            print(ctx.config)
    """

    @click.pass_context
    @functools.wraps(f)
    def wrapper(click_ctx: click.Context, *args, **kwargs):
        import_ctx: ImportContext = click_ctx.obj
        return f(import_ctx, *args, **kwargs)

    return wrapper


def handle_errors(f: Callable) -> Callable:
    """
    Decorator to handle common errors in CLI commands.

    Exit codes:
        0: Success
        1: General error (including an import that ended failed)
        2: Configuration error
        3: Credential rejected by the source
        4: Source or API error
        5: State error (including invalid session transitions)
    """

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)

        except click.exceptions.Exit:
            raise

        except ConfigurationError as e:
            logger.error("Configuration error", error=str(e))
            click.echo(f"Configuration Error: {e}", err=True)
            click.echo(
                "\nPlease check your configuration file and environment variables.",
                err=True,
            )
            raise click.exceptions.Exit(2) from e

        except InvalidCredentialError as e:
            logger.error("Credential error", error=str(e))
            click.echo(f"Credential Error: {e}", err=True)
            click.echo("\nPlease verify the source service key.", err=True)
            raise click.exceptions.Exit(3) from e

        except (SourceError, APIError) as e:
            logger.error("Source error", error=str(e))
            click.echo(f"Source Error: {e}", err=True)
            raise click.exceptions.Exit(4) from e

        except StateError as e:
            logger.error("State error", error=str(e))
            click.echo(f"State Error: {e}", err=True)
            raise click.exceptions.Exit(5) from e

        except Exception as e:
            logger.error("Unexpected error", error=str(e), exc_info=True)
            click.echo(f"Unexpected Error: {e}", err=True)
            click.echo(
                "\nAn unexpected error occurred. Please check the logs for details.",
                err=True,
            )
            raise click.exceptions.Exit(1) from e

    return wrapper
