"""structlog configuration for the app and the CLI scripts."""
import logging
import sys
from typing import Iterable, Optional

import structlog

from sourcebook import config


def configure_logging(
    level: Optional[str] = None,
    quiet_loggers: Optional[Iterable[str]] = None,
    quiet_level: int = logging.WARNING,
) -> None:
    """Route structlog through stdlib logging and render JSON lines.

    Args:
        level: Root log level name (default from config.LOG_LEVEL)
        quiet_loggers: Third-party logger names held at ``quiet_level``
            (default from config.QUIET_LOGGERS)
        quiet_level: Minimum level emitted by the quiet loggers
    """
    level = (level or config.LOG_LEVEL).upper()
    quiet_loggers = config.QUIET_LOGGERS if quiet_loggers is None else quiet_loggers

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
        force=True,
    )

    # pdfminer in particular logs every unparsed glyph at WARNING/INFO
    for name in quiet_loggers:
        logging.getLogger(name).setLevel(quiet_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
