"""Utility functions for schemashift."""

import logging
import os
import time
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import ParamSpec, TypeVar

from rich.console import Console
from rich.prompt import Confirm

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


def ensure_dir(path: Path) -> Path:
    """
    Create directory if it doesn't exist.

    Args:
        path: Directory path to create

    Returns:
        The created/existing directory path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def expand_path(path: str, base: Path | None = None) -> Path:
    """
    Expand ~ and environment variables in path.

    Args:
        path: Path string to expand
        base: Directory that relative paths are resolved against (default: cwd)

    Returns:
        Expanded absolute Path object
    """
    expanded = Path(os.path.expanduser(os.path.expandvars(path)))
    if base is not None and not expanded.is_absolute():
        expanded = base / expanded
    return expanded.resolve()


def prompt_confirm(message: str, default: bool = False) -> bool:
    """
    Prompt user for confirmation.

    Args:
        message: Confirmation message
        default: Default value if user just presses Enter

    Returns:
        True if confirmed, False otherwise
    """
    return Confirm.ask(message, default=default)


def exponential_backoff(attempt: int, base: float = 2.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Retry attempt number (0-indexed)
        base: Base delay in seconds, doubled on each attempt
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds
    """
    delay = base * (2**attempt)
    return min(delay, max_delay)


def retry(
    timeout: float,
    backoff: Callable[[int], float] = exponential_backoff,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[Exception, int], None] | None = None,
):
    """
    Decorator to retry a function on failure until a deadline passes.

    A timeout of 0 makes a single attempt.

    Args:
        timeout: Total seconds to keep retrying
        backoff: Function that calculates delay based on attempt number
        exceptions: Tuple of exception types to catch and retry
        on_retry: Callback function called on each retry (exception, attempt_num)

    Examples:
        @retry(timeout=5.0, exceptions=(FileExistsError,))
        def acquire() -> None:
            ...
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            deadline = time.monotonic() + timeout
            attempt = 0

            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise

                    attempt += 1
                    if on_retry:
                        on_retry(e, attempt)

                    time.sleep(min(backoff(attempt - 1), remaining))

        return wrapper

    return decorator


class ErrorContext:
    """Context for error handling with actionable guidance."""

    def __init__(self, error_prefix: str, suggestions: dict[type[Exception], str] | None = None):
        """
        Initialize error context.

        Args:
            error_prefix: Prefix for error messages
            suggestions: Mapping of exception types to actionable suggestions
        """
        self.error_prefix = error_prefix
        self.suggestions = suggestions or {}

    def suggestion_for(self, error: Exception) -> str | None:
        """Return the suggestion registered for the most specific matching type."""
        for error_type in type(error).__mro__:
            if error_type in self.suggestions:
                return self.suggestions[error_type]
        return None


def handle_operation(
    console: Console,
    operation: Callable[[], T],
    context: ErrorContext,
    error_types: tuple[type[Exception], ...] | None = None,
    reraise: bool = True,
) -> T | None:
    """
    Execute an operation with error reporting and actionable guidance.

    Args:
        console: Rich console for output
        operation: Callable that performs the operation
        context: Error context with prefix and suggestions
        error_types: Tuple of exception types to catch (None = catch all)
        reraise: Whether to re-raise the exception after reporting

    Returns:
        Result from the operation callable, or None if error and not reraising

    Raises:
        Exception: Re-raises caught exceptions if reraise=True

    Examples:
        context = ErrorContext(
            "Migrate",
            suggestions={LockContentionError: "Wait for the other run to finish"},
        )
        handle_operation(console, lambda: runner.migrate(), context)
    """
    try:
        return operation()
    except Exception as e:
        # Check if we should handle this exception type
        if error_types and not isinstance(e, error_types):
            raise

        console.print(f"[red]Error:[/red] {context.error_prefix}: {e}")
        logger.debug(f"{context.error_prefix} failed", exc_info=True)

        suggestion = context.suggestion_for(e)
        if suggestion:
            console.print(f"[cyan]Suggestion:[/cyan] {suggestion}")
        elif isinstance(e, (PermissionError, OSError)):
            console.print("[cyan]Suggestion:[/cyan] Check file permissions and disk space")

        if reraise:
            raise
        return None
