import logging.config
from enum import Enum

from dhcpd.config.config import config

LOGGER_CONFIG = config.get("logging")
logging.config.dictConfig(LOGGER_CONFIG)


class LogLevel(Enum):
    """Log levels accepted by name or number"""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            _name = value.strip().upper()
            for member in cls:
                if member.name == _name:
                    return member
        return None


class MainLogger:
    """Aplication wide logging."""

    @classmethod
    def get_logger(cls, service_name: str = "MAIN", log_level: str = "") -> logging.Logger:
        """Logging instance getter, configurable by service name and level
        Args:
            service_name(str): Logger instance
            log_level(str): Log level desired for your instance, empty keeps
                the level from the logging config.
        Returns:
            logging.Logger: Configured logger instance.
        """
        logger = logging.getLogger(service_name)
        if log_level:
            logger.setLevel(LogLevel(log_level).value)
        return logger
