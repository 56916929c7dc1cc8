"""Tests for concourse_harness.logging."""

import logging
import tempfile
import unittest
from pathlib import Path

from concourse_harness.logging import get_logger, log_lines, setup_logging


class TestSetupLogging(unittest.TestCase):
    def tearDown(self) -> None:
        logger = logging.getLogger("concourse_harness")
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()

    def test_console_levels(self) -> None:
        for kwargs, level in (
            ({}, logging.INFO),
            ({"verbose": True}, logging.DEBUG),
            ({"quiet": True}, logging.WARNING),
            ({"verbose": True, "quiet": True}, logging.DEBUG),
        ):
            with self.subTest(**kwargs):
                logger = setup_logging(**kwargs)
                self.assertEqual(len(logger.handlers), 1)
                self.assertEqual(logger.handlers[0].level, level)

    def test_log_file_records_debug(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "logs" / "harness.log"
            logger = setup_logging(quiet=True, log_file=path)
            get_logger("installer").debug("installer: extracting")
            for handler in logger.handlers:
                handler.flush()
                handler.close()
            logger.handlers.clear()
            self.assertIn("concourse_harness.installer: installer: extracting", path.read_text())


class TestLogLines(unittest.TestCase):
    def test_one_record_per_nonblank_line(self) -> None:
        log = get_logger("test")
        with self.assertLogs("concourse_harness.test", level="INFO") as cm:
            log_lines(log, logging.INFO, ["Starting", "", "  ", "Started"], prefix="start: ")
        self.assertEqual([r.getMessage() for r in cm.records], ["start: Starting", "start: Started"])


if __name__ == "__main__":
    unittest.main()
