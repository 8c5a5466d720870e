"""Decorators for couchquery command-line functionality."""

import functools
import logging
from typing import Any, Callable

import typer
from rich.console import Console

from .errors import CapabilityMismatch, CouchQueryError, DocumentConflict, DocumentNotFound, TransportError

logger = logging.getLogger(__name__)
console = Console()


def handle_store_errors(func: Callable) -> Callable:
    """
    Decorator turning store errors into readable CLI failures.

    Centralizes error handling for:
    - DocumentNotFound: Missing document, view or database
    - DocumentConflict: Revision mismatch on save
    - CapabilityMismatch: Feature not available on this store version
    - TransportError: Network or server failure
    - ValueError: Invalid arguments
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except DocumentNotFound as e:
            console.print(f"[bold red]Error:[/bold red] Not found: {e}")
            raise typer.Exit(code=1)
        except DocumentConflict as e:
            console.print(f"[bold red]Error:[/bold red] Conflict: {e}")
            console.print("[yellow]Tip: Another process changed the document, try again[/yellow]")
            raise typer.Exit(code=1)
        except CapabilityMismatch as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)
        except TransportError as e:
            logger.debug(f"Transport failure in {func.__name__}: {e.body}")
            console.print(f"[bold red]Error:[/bold red] Store request failed: {e}")
            raise typer.Exit(code=1)
        except ValueError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except CouchQueryError as e:
            logger.error(f"Unexpected store error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper
