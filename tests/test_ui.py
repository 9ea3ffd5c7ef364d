"""Tests for the log panel's record rendering."""
import pytest
from loguru import logger

from tabchat.ui import format_log_record
from tabchat.ui.config import LOG_LEVEL_STYLES


@pytest.fixture
def records():
    """Loguru records captured while the test runs."""
    captured = []
    sink_id = logger.add(lambda message: captured.append(message.record), level="DEBUG", format="{message}")
    yield captured
    logger.remove(sink_id)


class TestFormatLogRecord:
    """Tests for turning loguru records into log panel lines."""

    def test_line_layout(self, records):
        """Test that a line carries time, padded level and message."""
        logger.info("session.send session_id={} chars={}", "chat_1", 5)

        line = format_log_record(records[-1])

        time_part, rest = line.plain.split(" ", 1)
        assert len(time_part) == len("12:00:00")
        assert rest == "INFO     session.send session_id=chat_1 chars=5"

    def test_level_is_styled(self, records):
        logger.warning("session.retry_scheduled attempt=2")

        line = format_log_record(records[-1])

        styles = {str(span.style) for span in line.spans}
        assert LOG_LEVEL_STYLES["WARNING"] in styles

    def test_markup_is_not_interpreted(self, records):
        """Test that brackets in a message survive as literal text."""
        logger.error("session.failed error={}", "[bold]boom[/bold]")

        line = format_log_record(records[-1])

        assert line.plain.endswith("session.failed error=[bold]boom[/bold]")
