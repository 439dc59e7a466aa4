"""Logging configuration for Hangar.

Provides a single place to configure the standard library logging
hierarchy used by the server, the deployment pipeline and the CLI.
"""

from __future__ import annotations

import logging
import sys

LOGGER_NAMESPACE = "hangar"

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# Third-party loggers that are noisy at INFO level
_NOISY_LOGGERS = (
    "botocore",
    "boto3",
    "urllib3",
    "docker",
    "httpx",
    "httpcore",
)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a Hangar module.

    Args:
        name: Module name, usually ``__name__``

    Returns:
        Logger instance under the ``hangar`` namespace
    """
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: str | None = None,
) -> None:
    """Configure the ``hangar`` logger hierarchy.

    Args:
        verbose: Enable DEBUG level output
        quiet: Only emit warnings and errors
        level: Explicit level name, overrides verbose/quiet when given
    """
    if level:
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    elif verbose:
        resolved = logging.DEBUG
    elif quiet:
        resolved = logging.WARNING
    else:
        resolved = logging.INFO

    root = logging.getLogger(LOGGER_NAMESPACE)
    root.setLevel(resolved)

    # Avoid stacking handlers when called repeatedly (tests, CLI subcommands)
    if not any(getattr(h, "_hangar_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        handler._hangar_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.propagate = False

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(
            logging.DEBUG if verbose else logging.WARNING
        )
