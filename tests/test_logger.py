"""
Tests for logger functionality.
"""

import pytest
from intake.logger import StructuredLogger, get_logger, reset_logger


class TestStructuredLogger:
    """Test structured logging functionality."""

    def test_logger_creation(self, tmp_path):
        """Logger should be created with default settings."""
        logger = StructuredLogger(
            name="test",
            level="INFO",
            log_dir=tmp_path,
            enable_console=False,
        )

        assert logger.logger.name == "test"
        assert logger.metrics["duplicate_checks"] == 0

    def test_log_methods(self, tmp_path):
        """All log level methods should work."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        # Should not raise exceptions
        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")
        logger.critical("Critical message")

    def test_log_with_context(self, tmp_path):
        """Context is appended as JSON, non-JSON values included as text."""
        logger = StructuredLogger(
            name="test-context",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Message with context", candidate_id="abc", path=tmp_path)

        content = next(tmp_path.glob("*.log")).read_text()
        assert '"candidate_id": "abc"' in content

    def test_metrics_tracking(self, tmp_path):
        """Metrics should be tracked correctly."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.record_duplicate_check(2)
        logger.record_duplicate_check(0)
        logger.record_resolution("link")
        logger.record_resolution("link")
        logger.record_resolution("merge")
        logger.record_bulk_item("success")
        logger.record_bulk_item("duplicate")
        logger.record_error("ExtractionFailure")

        metrics = logger.get_metrics()

        assert metrics["duplicate_checks"] == 2
        assert metrics["matches_found"] == 2
        assert metrics["resolutions"] == {"link": 2, "merge": 1}
        assert metrics["bulk_items"] == {"success": 1, "duplicate": 1}
        assert metrics["errors_by_type"]["ExtractionFailure"] == 1

    def test_match_rate_calculation(self, tmp_path):
        """Match rate is matches per check."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        assert logger.get_metrics()["match_rate"] == 0.0

        logger.record_duplicate_check(1)
        logger.record_duplicate_check(0)
        logger.record_duplicate_check(1)

        assert logger.get_metrics()["match_rate"] == pytest.approx(0.667, rel=0.01)

    def test_set_level(self, tmp_path):
        logger = StructuredLogger(
            name="test-level",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.set_level("warning")

        assert logger.logger.level == 30

    def test_log_file_creation(self, tmp_path):
        """Log file should be created in specified directory."""
        logger = StructuredLogger(
            name="test",
            log_dir=tmp_path,
            enable_console=False,
        )

        logger.info("Test message")

        log_files = list(tmp_path.glob("intake_*.log"))
        assert len(log_files) == 1

        log_content = log_files[0].read_text()
        assert "Test message" in log_content


class TestGlobalLogger:
    """Test global logger singleton."""

    def test_get_logger_singleton(self, tmp_path):
        """get_logger should return same instance."""
        reset_logger()  # Start fresh

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger2 = get_logger()

        assert logger1 is logger2

    def test_reset_logger(self, tmp_path):
        """reset_logger should create new instance."""
        reset_logger()

        logger1 = get_logger(log_dir=tmp_path, enable_console=False)
        logger1.record_resolution("create")

        reset_logger()

        logger2 = get_logger(log_dir=tmp_path, enable_console=False)

        # Should be different instance with fresh metrics
        assert logger2.metrics["resolutions"] == {}
