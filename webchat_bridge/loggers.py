"""
Logging setup for the bridge.
Console output plus a timestamped log file per run.
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "webchat_bridge"
LOG_DIR = Path("data/logs/bridge")

# Mapping from level name (string) to logging level (int)
LEVELS = {
    'CRITICAL': logging.CRITICAL,
    'ERROR': logging.ERROR,
    'WARNING': logging.WARNING,
    'INFO': logging.INFO,
    'DEBUG': logging.DEBUG,
}


class SafeStreamHandler(logging.StreamHandler):
    """
    A stream handler that replaces characters the console can't encode.
    Discord usernames and message bodies routinely contain emoji.
    """
    def emit(self, record):
        try:
            msg = self.format(record)
            stream = self.stream
            encoding = getattr(stream, "encoding", None) or "utf-8"
            stream.write(msg.encode(encoding, errors='replace').decode(encoding) + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


class BridgeFormatter(logging.Formatter):
    """Formatter for the bridge log file."""

    def format(self, record):
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        message = (
            f"[{timestamp}] {record.levelname:8} "
            f"{record.name.split('.')[-1]:14} | {record.getMessage()}"
        )
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def resolve_level(debug: bool = False) -> int:
    """--debug wins; otherwise LOG_LEVEL_WEBCHAT_BRIDGE, defaulting to INFO."""
    if debug:
        return logging.DEBUG
    env_var_key = f"LOG_LEVEL_{LOGGER_NAME.upper()}"
    level_name = os.getenv(env_var_key, 'INFO')
    return LEVELS.get(level_name.upper(), logging.INFO)


def setup_logging(debug: bool = False, log_dir: Optional[Path] = LOG_DIR) -> logging.Logger:
    """
    Configure the package logger.

    Installs a console handler and, unless `log_dir` is None, a UTF-8 file
    handler writing to `<log_dir>/bridge_<timestamp>.log`. Safe to call more
    than once; handlers are only added the first time.
    """
    level = resolve_level(debug)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        for handler in logger.handlers:
            if isinstance(handler, SafeStreamHandler):
                handler.setLevel(level)
        return logger

    console_handler = SafeStreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    ))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        file_handler = logging.FileHandler(log_dir / f"bridge_{timestamp}.log", encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(BridgeFormatter())
        logger.addHandler(file_handler)

    # discord.py is chatty at DEBUG
    logging.getLogger("discord").setLevel(logging.INFO if level > logging.DEBUG else logging.DEBUG)

    return logger
