"""Structured logging for the relay process.

Every line goes through structlog: relay modules log key/value events with
`structlog.get_logger()`, and stdlib loggers (psycopg2, httpx, the metrics
server) are routed through the same processor chain via ProcessorFormatter.
"""

import logging
import sys

import structlog

# httpx logs every request at INFO, which drowns out the relay itself
_NOISY_LOGGERS = ("httpx", "httpcore")

_TIMESTAMPER = structlog.processors.TimeStamper(fmt="iso", utc=True)


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _TIMESTAMPER,
    ]


def _renderer(json: bool) -> structlog.types.Processor:
    if json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def configure_logging(service_name: str, level: str = "INFO", json: bool | None = None) -> None:
    """Route structlog and stdlib logging to stderr through one formatter.

    Args:
        service_name: Bound as `service` on every entry (e.g., 'console-relay')
        level: Log level name; unknown names fall back to INFO
        json: Force JSON output on or off; defaults to JSON unless stdout is a TTY
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO
    if json is None:
        json = not sys.stdout.isatty()

    structlog.configure(
        processors=_pre_chain()
        + [
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processor=_renderer(json),
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)
