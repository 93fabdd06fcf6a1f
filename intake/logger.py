"""
Structured logging for candidate intake.

Provides centralized logging with console and file outputs, plus counters
for duplicate checks, resolutions and bulk upload outcomes.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks duplicate-resolution metrics.
    """

    def __init__(
        self,
        name: str = "intake",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        self.metrics = {
            "duplicate_checks": 0,
            "matches_found": 0,
            "resolutions": {},
            "bulk_items": {},
            "errors_by_type": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"intake_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def set_level(self, level: str):
        """Change the logger and console level (the file handler keeps DEBUG)."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in self.logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(getattr(logging, level.upper()))

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_duplicate_check(self, match_count: int):
        """Count one matcher run and the matches it produced."""
        self.metrics["duplicate_checks"] += 1
        self.metrics["matches_found"] += match_count

    def record_resolution(self, kind: str):
        """Count a committed resolution (create, merge, link, dismiss)."""
        resolutions = self.metrics["resolutions"]
        resolutions[kind] = resolutions.get(kind, 0) + 1

    def record_bulk_item(self, status: str):
        """Count a bulk item reaching a final status."""
        items = self.metrics["bulk_items"]
        items[status] = items.get(status, 0) + 1

    def record_error(self, error_type: str):
        errors = self.metrics["errors_by_type"]
        errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Return current metrics, including the overall match rate."""
        metrics_copy = self.metrics.copy()
        checks = metrics_copy["duplicate_checks"]
        metrics_copy["match_rate"] = (
            round(metrics_copy["matches_found"] / checks, 3) if checks else 0.0
        )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Intake Session Metrics ===")
        self.info(f"Duplicate checks: {metrics['duplicate_checks']} ({metrics['matches_found']} matches)")

        if metrics["resolutions"]:
            self.info("Resolutions:")
            for kind, count in metrics["resolutions"].items():
                self.info(f"  {kind}: {count}")

        if metrics["bulk_items"]:
            self.info("Bulk items:")
            for status, count in metrics["bulk_items"].items():
                self.info(f"  {status}: {count}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "intake",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
