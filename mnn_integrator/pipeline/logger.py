"""Structured logging for pipeline execution."""

import copy
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from ..io.logging import get_timestamped_log_path


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name for console output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        # Colour a copy so the file handler still sees the plain level name
        record = copy.copy(record)
        color = self.colors.get(record.levelname, self.colors["RESET"])
        record.levelname = f"{color}{record.levelname}{self.colors['RESET']}"
        return super().format(record)


class PipelineLogger:
    """Structured logging for pipeline execution.

    Writes a detailed timestamped log file and coloured console output,
    with helpers for stage start, completion, errors and result summaries.

    Parameters
    ----------
    log_dir : str
        Directory for log files
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    log_name : str, optional
        Logger name. Default: "mnn_integrator"

    Example
    -------
    >>> logger = PipelineLogger("logs/", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("preprocess", "Preprocessing")
    >>> logger.log_stage_complete("preprocess", 45.2)
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
        log_dir: str,
        log_level: str = "INFO",
        log_name: str = "mnn_integrator",
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.log_file = get_timestamped_log_path(self.log_dir / "pipeline.log")

        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.handlers = []

    def setup(self) -> None:
        """Attach the file handler and the coloured console handler."""
        file_handler = logging.FileHandler(self.log_file, mode="w")
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(
            ColoredFormatter(
                fmt="%(asctime)s - %(levelname)s - %(message)s",
                datefmt="%H:%M:%S",
                colors=self.COLORS,
            )
        )

        self.logger.addHandler(file_handler)
        self.logger.addHandler(console_handler)

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        """Log the start of a pipeline stage."""
        separator = "=" * 80
        self.logger.info(separator)
        self.logger.info(f"Starting stage {stage_id}: {stage_name}")
        self.logger.info(separator)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        """Log successful completion of a stage with its duration in seconds."""
        self.logger.info(
            f"Stage {stage_id} completed successfully in {self.format_duration(duration)}"
        )

    def log_stage_error(self, stage_id: str, error: str) -> None:
        """Log a stage error."""
        self.logger.error(f"Stage {stage_id} failed: {error}")

    def log_summary(self, stage_id: str, summary: Dict[str, Any]) -> None:
        """Log a stage result summary as ``key: value`` lines."""
        self.logger.info(f"Stage {stage_id} summary:")
        for key, value in summary.items():
            self.logger.info(f"  {key}: {value}")

    def log_info(self, message: str) -> None:
        self.logger.info(message)

    def log_warning(self, message: str) -> None:
        self.logger.warning(message)

    def log_error(self, message: str) -> None:
        self.logger.error(message)

    def log_debug(self, message: str) -> None:
        self.logger.debug(message)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format a duration as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        if seconds < 3600:
            return f"{int(seconds // 60)}m {int(seconds % 60)}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"
