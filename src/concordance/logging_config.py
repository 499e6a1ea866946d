"""Singleton logging configuration.

setup_logging() configures the root logger once; later calls are
no-ops unless ``force`` is set (the CLI uses it to apply --verbose).
"""

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers to suppress to WARNING
_SUPPRESSED_LOGGERS = (
    "asyncio",
    "concurrent.futures",
)

_configured = False


def setup_logging(level: str = "INFO", *, force: bool = False) -> None:
    """Configure root logger format and level. Idempotent."""
    global _configured  # noqa: PLW0603
    if _configured and not force:
        return
    _configured = True

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        force=force,
    )

    for name in _SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
