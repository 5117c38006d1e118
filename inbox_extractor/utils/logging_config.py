"""
Encoding-Safe Logging Utility

Configures logging for the command-line runner and embedding services with
Unicode handling that survives limited consoles. Pipeline log messages use a
few symbols (priority markers, arrows) that some Windows consoles cannot
print; they are replaced by ASCII equivalents there.
"""

import logging
import os
import platform
import sys
from typing import Optional


class SafeFormatter(logging.Formatter):
    """
    Log formatter with encoding-safe character substitution.

    Substitutes Unicode symbols with ASCII alternatives when the environment
    has limited encoding support or FORCE_ASCII_LOGGING is set.
    """

    SYMBOL_MAP = {
        "🎯": "[PRIORITY]",
        "✅": "[OK]",
        "❌": "[ERROR]",
        "⚠️": "[WARNING]",
        "⚠": "!",
        "→": "->",
        "←": "<-",
        "•": "*",
    }

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None,
                 style: str = '%', validate: bool = True):
        super().__init__(fmt, datefmt, style, validate)
        self.is_windows = platform.system() == "Windows"
        self.force_ascii = os.environ.get("FORCE_ASCII_LOGGING", "0").lower() in ("1", "true", "yes")
        self.limited_encoding = self._has_limited_encoding()

    def _has_limited_encoding(self) -> bool:
        """
        Detect if the current environment has limited encoding support.

        Returns:
            bool: True if symbols should be replaced
        """
        if self.force_ascii:
            return True

        if self.is_windows:
            # Windows Terminal and an explicit UTF-8 IO encoding both cope
            if "WT_SESSION" in os.environ:
                return False
            if os.environ.get("PYTHONIOENCODING", "").lower() == "utf-8":
                return False
            return True

        encoding = (getattr(sys.stderr, "encoding", None) or "").lower()
        return bool(encoding) and "utf" not in encoding

    def format(self, record: logging.LogRecord) -> str:
        formatted_message = super().format(record)

        if self.limited_encoding:
            for unicode_char, ascii_char in self.SYMBOL_MAP.items():
                formatted_message = formatted_message.replace(unicode_char, ascii_char)
            formatted_message = formatted_message.encode("ascii", "replace").decode("ascii")

        return formatted_message


def configure_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_str: Optional[str] = None
) -> logging.Logger:
    """
    Configure the root logger with encoding-safe formatting.

    Args:
        level: Logging level name
        log_file: Optional log file path
        format_str: Custom format string for log messages

    Returns:
        logging.Logger: The configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Clear any existing handlers to avoid duplication
    if logger.hasHandlers():
        logger.handlers.clear()

    if format_str is None:
        format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    formatter = SafeFormatter(format_str)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)

            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Failed to create log file handler: {str(e)}")

    # Third-party HTTP clients are chatty at DEBUG
    for noisy in ("httpx", "httpcore", "aiohttp"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
