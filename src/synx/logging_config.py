"""structlog configuration for synx.

Routes structlog through the stdlib ``logging`` module so library users can
keep their own handlers. ``SYNX_DEBUG=1`` lowers the threshold to DEBUG.
"""

import logging
import os
import sys

import structlog

from synx.config import ENV_DEBUG


def configure_logging(level: int | None = None, json: bool = False) -> None:
    """Configure structlog and the root synx logger.

    Args:
        level: Explicit log level; defaults to DEBUG when SYNX_DEBUG is set,
            WARNING otherwise.
        json: Render JSON lines instead of the console renderer.
    """
    if level is None:
        level = logging.DEBUG if os.environ.get(ENV_DEBUG) else logging.WARNING

    processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # the console renderer formats exceptions itself
        processors.append(
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        )

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger("synx")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False
