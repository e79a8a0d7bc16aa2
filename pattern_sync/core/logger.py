"""
Logging configuration for pattern-sync.

This module sets up the logging system with multiple outputs:
    - Console: Real-time status with tqdm-compatible formatting
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - save_failures.log: Tracks whose save did not reach the server

Everything written to the screen is also saved to file, then filtered
into the specialized files.

Log File Locations:
    All log files are created in the directory set by logging.directory
    in config.yaml. Each run writes new files named with a timestamp.

Usage:
    from pattern_sync.core.logger import setup_logging, get_logger

    setup_logging(log_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Library loaded")
    log_save_failure(logger, track_id, "Drum Loop", "Server returned 500")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that adds a colored level name to console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        return f"{color}{record.levelname}{Colors.RESET}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    `psync push` shows a tqdm bar while uploading; plain stderr writes would
    tear the bar apart. tqdm.write() prints the message above any active bar.

    Attributes:
        stream: The output stream (defaults to sys.stderr).
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class SaveFailureHandler(logging.Handler):
    """
    Handler that captures failed saves for the save failure report.

    Listens for log records carrying save failure fields and writes them
    to save_failures.log in a simple, human-readable format:

        Drum Loop [6f1c2d0e-...]
        Server returned 500

        Bass Line [a93b77e1-...]
        Network error

    The handler looks for these extra fields in log records:
        - 'save_failed_track_id': Id of the track whose save failed
        - 'save_failed_track_name': Display name (optional)
        - 'save_failed_reason': Why the save failed

    Only records containing 'save_failed_track_id' are written.

    Attributes:
        report_path: Path to the save_failures.log file.
        report_file: Open file handle (set by open()).
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "save_failed_track_id"):
            return

        if self.report_file is None:
            return

        try:
            track_id = getattr(record, "save_failed_track_id")
            track_name = getattr(record, "save_failed_track_name", None) or "Untitled"
            reason = getattr(record, "save_failed_reason", "")

            self.report_file.write(f"{track_name} [{track_id}]\n")
            self.report_file.write(f"{reason}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """
        Close the report file handle.

        Called automatically when logging is shut down.
        Safe to call multiple times.
        """
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only allows ERROR and CRITICAL level records.

    Used by the error log file handler to exclude DEBUG, INFO, and WARNING.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(log_dir: Path, console_level: str = "INFO") -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        log_dir: Directory where log files will be created.
        console_level: Level name for console output ("DEBUG", "INFO", ...).

    Behavior:
        1. Create log_dir if it doesn't exist
        2. Generate timestamp for this run's log files
        3. Configure root logger level to DEBUG
        4. Console handler (TqdmLoggingHandler), colored, at console_level
        5. Full log file handler: log_full_{timestamp}.log at DEBUG
        6. Error log file handler: log_errors_{timestamp}.log, ERROR+ only
        7. Save failures handler: save_failures_{timestamp}.log

    See Also:
        log_save_failure(): Helper to log with the correct extra fields
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove any existing handlers
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    full_log_path = log_dir / f"log_full_{timestamp}.log"
    full_handler = logging.FileHandler(full_log_path, mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_log_path = log_dir / f"log_errors_{timestamp}.log"
    error_handler = logging.FileHandler(error_log_path, mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    save_failures_path = log_dir / f"save_failures_{timestamp}.log"
    save_handler = SaveFailureHandler(save_failures_path)
    save_handler.open()
    root_logger.addHandler(save_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'pattern_sync.autosave.scheduler'.

    Returns:
        logging.Logger: A logger instance configured by setup_logging().

    Note:
        Loggers obtained before setup_logging() is called will have no
        handlers and will not produce output.
    """
    return logging.getLogger(name)


def format_saved_message(track_name: str, track_id: str) -> str:
    """Format a 'Saved' console message with colors."""
    return (
        f"{Colors.GREEN}Saved{Colors.RESET}: "
        f"{track_name} {Colors.CYAN}[{track_id}]{Colors.RESET}"
    )


def format_failed_message(action: str, message: str) -> str:
    """Format a failure console message with colors."""
    return f"{Colors.RED}{action} failed{Colors.RESET}: {message}"


def log_save_failure(
    logger: logging.Logger,
    track_id: str,
    track_name: str | None,
    error_message: str
) -> None:
    """
    Log a track whose save did not reach the server.

    Convenience function that logs a save failure with the extra fields
    SaveFailureHandler picks up.

    Args:
        logger: The logger to use for the message.
        track_id: Id of the track whose save failed.
        track_name: Display name of the track, if known.
        error_message: Description of why the save failed.

    Example:
        log_save_failure(
            logger,
            track_id="6f1c2d0e-...",
            track_name="Drum Loop",
            error_message="Server returned 500"
        )
    """
    logger.error(
        f"Save failed: {track_name or track_id} - {error_message}",
        extra={
            "save_failed_track_id": track_id,
            "save_failed_track_name": track_name,
            "save_failed_reason": error_message,
        }
    )


def shutdown_logging() -> None:
    """
    Properly shut down the logging system.

    Flushes and closes every handler on the root logger, then removes
    them. Called from the CLI's finally block.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
