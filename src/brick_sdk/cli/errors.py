"""
CLI Error Handling
==================

Provides consistent error reporting and exit codes for the CLI.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn

import click

from brick_sdk.errors import BrickError, BrickSdkError, CommsError


class ExitCode(IntEnum):
    """Standard exit codes for the CLI."""
    SUCCESS = 0
    BRICK_ERROR = 1      # Connection, transfer or firmware error
    INVALID_ARGS = 2     # Invalid arguments or missing files
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(error: Exception, verbose: bool = False) -> NoReturn:
    """
    Report an exception and exit with the matching exit code.

    Args:
        error: The exception that was raised
        verbose: If True, print full traceback for internal errors

    Raises:
        SystemExit: Always
    """
    if isinstance(error, CommsError):
        click.echo(f"Connection error: {error}", err=True)
        sys.exit(ExitCode.BRICK_ERROR)

    elif isinstance(error, BrickError):
        click.echo(f"{error.family} error: {error}", err=True)
        sys.exit(ExitCode.BRICK_ERROR)

    elif isinstance(error, BrickSdkError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.BRICK_ERROR)

    elif isinstance(error, (click.BadParameter, FileNotFoundError, PermissionError)):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
