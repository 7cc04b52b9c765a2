from __future__ import annotations

import logging
import unittest
from pathlib import Path

from strm_watch.log import Ansi, ColorizingFormatter, log_action


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


class LogActionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.logger = logging.getLogger("strm_watch.tests.log")
        self.logger.propagate = False
        self.logger.setLevel(logging.DEBUG)
        self.handler = ListHandler()
        self.logger.addHandler(self.handler)

    def tearDown(self) -> None:
        self.logger.removeHandler(self.handler)

    def test_action_and_path_travel_as_extra(self) -> None:
        log_action(self.logger, "STRM", "/dst/a.strm -> /src/a.mkv", path=Path("/dst/a.strm"), is_dir=False)

        record = self.handler.records[0]
        self.assertEqual(record.getMessage(), "STRM | /dst/a.strm -> /src/a.mkv")
        self.assertEqual(record.action, "STRM")
        self.assertEqual(record.path_text, "/dst/a.strm")
        self.assertFalse(record.is_dir)

    def test_colors(self) -> None:
        formatter = ColorizingFormatter(use_color=True, fmt="%(message)s")
        log_action(self.logger, "SOFT_DELETE", "/dst/a.strm -> /trash/a.strm")
        log_action(self.logger, "MKDIR_FAIL", "/dst | denied", level=logging.WARNING)
        log_action(self.logger, "DELETE_FAIL", "/dst/a.strm | busy", level=logging.ERROR)

        soft, mkdir_fail, delete_fail = (formatter.format(r) for r in self.handler.records)
        self.assertTrue(soft.startswith(f"{Ansi.ORANGE}SOFT_DELETE{Ansi.RESET}"))
        self.assertTrue(mkdir_fail.startswith(f"{Ansi.RED}MKDIR_FAIL{Ansi.RESET}"))
        self.assertEqual(delete_fail, f"{Ansi.RED}DELETE_FAIL | /dst/a.strm | busy{Ansi.RESET}")

    def test_plain_when_color_is_off(self) -> None:
        log_action(self.logger, "REPLICATE", "(copy) /src -> /dst/")
        formatter = ColorizingFormatter(use_color=False, fmt="%(message)s")
        self.assertEqual(formatter.format(self.handler.records[0]), "REPLICATE | (copy) /src -> /dst/")


if __name__ == "__main__":
    unittest.main()
