import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as loguru_logger

from lovelink.settings import Settings, get_settings

NO_ACCOUNT = "-"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "{extra[app]} | account={extra[account]} | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


class InterceptHandler(logging.Handler):
    """Forward standard logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # walk back to the frame that issued the logging call
        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def account_context(account_id: Optional[str]):
    """Tag every record emitted inside the block with the account being resolved."""
    return loguru_logger.contextualize(account=account_id or NO_ACCOUNT)


class Loggin:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self.level = "DEBUG" if self._settings.debug else "INFO"

    def setup_logger(self):
        loguru_logger.remove()
        loguru_logger.configure(extra={"app": self._settings.app_name, "account": NO_ACCOUNT})
        loguru_logger.add(sink=sys.stderr, level=self.level, format=LOG_FORMAT)

        # route the engine's stdlib loggers into loguru
        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

        if self._settings.log_to_file:
            file_path = Path(self._settings.log_file_path)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            loguru_logger.add(
                sink=str(file_path),
                level=self.level,
                format=LOG_FORMAT,
                rotation="100 MB",
                retention="10 days",
                enqueue=True,
                backtrace=False,
                diagnose=False,
            )

        return loguru_logger
