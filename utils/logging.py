import logging
import colorlog
from pathlib import Path
from typing import Optional

CONTEXT_ATTRIBUTES = ('cycle_id', 'address', 'dry_run')


class PayoutContextFilter(logging.Filter):
    """Add payout context to log records."""
    def filter(self, record):
        # Ensure all records have certain attributes, even if empty
        parts = []
        for attr in CONTEXT_ATTRIBUTES:
            if not hasattr(record, attr):
                setattr(record, attr, None)
            value = getattr(record, attr)
            if value is not None:
                parts.append(f"{attr}={value}")
        record.context = f" [{' '.join(parts)}]" if parts else ""
        return True


def setup_logger(
    name: Optional[str],
    log_file: Optional[str] = None,
    level: str = "INFO"
) -> logging.Logger:
    """Set up a colored logger instance with optional file output.

    Pass ``None`` as the name to configure the root logger.
    """

    # Get or create logger
    logger = logging.getLogger(name)

    # Clear any existing handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logger.setLevel(numeric_level)
    logger.propagate = False

    context_filter = PayoutContextFilter()

    # Create console handler with colored formatting
    console_handler = colorlog.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.addFilter(context_filter)

    color_formatter = colorlog.ColoredFormatter(
        "%(asctime)s - %(log_color)s%(levelname)-8s%(reset)s - %(name)s - %(message)s%(context)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        reset=True,
        log_colors={
            'DEBUG':    'cyan',
            'INFO':     'green',
            'WARNING':  'yellow',
            'ERROR':    'red',
            'CRITICAL': 'red,bg_white',
        }
    )

    console_handler.setFormatter(color_formatter)
    logger.addHandler(console_handler)

    # Add file handler if specified
    if log_file:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        file_handler = logging.FileHandler(
            filename=log_dir / log_file,
            encoding="utf-8",
            mode="a"
        )
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s%(context)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    return logger
