"""Logging configuration for agentorch."""

import logging
import sys


def setup_logging(verbose: int = 0) -> None:
    """Attach a stderr handler to the agentorch logger.

    Args:
        verbose: Verbosity level (0=off, 1=INFO, 2+=DEBUG)
    """
    if verbose == 0:
        return

    level = logging.DEBUG if verbose >= 2 else logging.INFO

    logger = logging.getLogger("agentorch")
    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Repeated invocations in one process (tests, CliRunner) must not stack handlers
    for handler in list(logger.handlers):
        if getattr(handler, "_agentorch", False):
            logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    stderr_handler._agentorch = True  # type: ignore[attr-defined]
    logger.addHandler(stderr_handler)
