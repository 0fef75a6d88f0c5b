"""Console and file logging for workflow runs."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name for terminal output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        original = record.levelname
        color = self.colors.get(original, self.colors["RESET"])
        record.levelname = f"{color}{original}{self.colors['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class WorkflowLogger:
    """Logging for workflow runs.

    Writes detailed records to a timestamped file in ``log_dir`` and
    concise colored records to stdout.

    Parameters
    ----------
    log_dir : str, optional
        Directory for log files (console only if None)
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str, optional
        Logger name. Default: "scrna_workflow". Engine loggers
        (``scrna_workflow.core...``) propagate into it.
    log_filename : str, optional
        Log file name (``workflow_<timestamp>.log`` if None)

    Example
    -------
    >>> logger = WorkflowLogger("logs/", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("qc", "Cell quality control")
    >>> logger.log_stage_complete("qc", 12.4)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",  # Cyan
        "INFO": "\033[0;34m",  # Blue
        "WARNING": "\033[1;33m",  # Yellow
        "ERROR": "\033[0;31m",  # Red
        "CRITICAL": "\033[1;31m",  # Bold Red
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: str = "INFO",
        log_name: str = "scrna_workflow",
        log_filename: Optional[str] = None,
    ):
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.log_file: Optional[Path] = None
        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            if log_filename is None:
                timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
                log_filename = f"workflow_{timestamp}.log"
            self.log_file = self.log_dir / log_filename

        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False
        self.close()

    def setup(self, console: bool = True) -> None:
        """Attach the console handler and, with a log directory, the file handler."""
        if self.log_file is not None:
            file_handler = logging.FileHandler(self.log_file, mode="w")
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            self.logger.addHandler(file_handler)

        if console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(
                ColoredFormatter(
                    fmt="%(asctime)s - %(levelname)s - %(message)s",
                    datefmt="%H:%M:%S",
                    colors=self.COLORS,
                )
            )
            self.logger.addHandler(console_handler)

    def close(self) -> None:
        """Detach and close all handlers."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

    def get_child(self, suffix: str) -> logging.Logger:
        """Logger for an engine, writing through this logger's handlers."""
        return self.logger.getChild(suffix)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        separator = "=" * 80
        self.logger.info(separator)
        self.logger.info("Starting stage %s: %s", stage_id, stage_name)
        self.logger.info(separator)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        self.logger.info(
            "Stage %s completed successfully in %s", stage_id, self.format_duration(duration)
        )

    def log_stage_error(self, stage_id: str, error: str) -> None:
        self.logger.error("Stage %s failed: %s", stage_id, error)

    def log_info(self, message: str) -> None:
        self.logger.info(message)

    def log_warning(self, message: str) -> None:
        self.logger.warning(message)

    def log_error(self, message: str) -> None:
        self.logger.error(message)

    def log_debug(self, message: str, exc_info: Optional[bool] = None) -> None:
        self.logger.debug(message, exc_info=exc_info)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format seconds as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{mins}m {secs}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            return f"{hours}h {mins}m"


def setup_logging(
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_filename: str = "workflow.log",
) -> WorkflowLogger:
    """Configure logging for a stage runner.

    Parameters
    ----------
    verbose : bool
        Enable debug-level logging
    log_dir : Optional[Path]
        Directory for log file (if None, console only)
    log_filename : str
        Log file name

    Returns
    -------
    WorkflowLogger
        Configured logger
    """
    logger = WorkflowLogger(
        str(log_dir) if log_dir is not None else None,
        log_level="DEBUG" if verbose else "INFO",
        log_filename=log_filename,
    )
    logger.setup()
    if logger.log_file is not None:
        logger.log_info(f"Log file: {logger.log_file}")
    return logger
