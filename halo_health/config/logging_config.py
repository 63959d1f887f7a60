"""
Health System Console Logging Configuration
===========================================

Colorized console logging for the health subsystem so escalation,
recovery and cleanup activity stand out in the host's terminal output.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)

HEALTH_LOGGER_NAME = "halo_health"

_HANDLER_MARKER = "_halo_health_handler"


class HealthLogFormatter(logging.Formatter):
    """Formatter with level colours and the component tag kept up front"""

    COLORS = {
        'DEBUG': Fore.WHITE + Style.DIM,
        'INFO': Fore.CYAN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Style.BRIGHT,
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record):
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]
        message = record.getMessage()
        level = record.levelname

        if self.use_color:
            color = self.COLORS.get(level, Fore.WHITE)
            line = (
                f"{Fore.BLUE}{timestamp}{Style.RESET_ALL} "
                f"{color}{level:<8}{Style.RESET_ALL} {message}"
            )
        else:
            line = f"{timestamp} {level:<8} {message}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_health_logging(
    level: int = logging.INFO,
    use_color: Optional[bool] = None,
    force: bool = False,
) -> logging.Logger:
    """
    Install a console handler on the health logger.

    Repeated calls are safe - the handler is only added once unless
    ``force=True`` is passed.
    """
    health_logger = logging.getLogger(HEALTH_LOGGER_NAME)

    existing = [h for h in health_logger.handlers if getattr(h, _HANDLER_MARKER, False)]
    if existing and not force:
        health_logger.setLevel(level)
        return health_logger
    for handler in existing:
        health_logger.removeHandler(handler)

    if use_color is None:
        use_color = sys.stderr.isatty()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(HealthLogFormatter(use_color=use_color))
    setattr(handler, _HANDLER_MARKER, True)

    health_logger.addHandler(handler)
    health_logger.setLevel(level)
    health_logger.propagate = False
    return health_logger
