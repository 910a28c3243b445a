"""
Structured logging setup.

Library modules only call get_logger; applications (the CLI) call
setup_logging once at startup.
"""

import logging
import sys

import structlog


def setup_logging(level: int = logging.INFO, json_output: bool = False) -> None:
    """Configure structlog processors and the stdlib root logger.

    Args:
        level: Minimum level that is emitted
        json_output: Render JSON lines instead of the console format
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )


def get_logger(name: str = "agent_telemetry"):
    return structlog.get_logger(name)
