from __future__ import annotations

import os
import time

from twisted.trial import unittest

from stackrepl.python.logfile import LOGFILE_NAME, ReplDailyLogFile, open_logfile


class ReplDailyLogFileTests(unittest.TestCase):
    def setUp(self) -> None:
        directory = self.mktemp()
        os.makedirs(directory)
        self.logfile = ReplDailyLogFile(LOGFILE_NAME, directory)
        self.addCleanup(self.logfile.close)

    def test_suffix_from_tuple(self) -> None:
        self.assertEqual(self.logfile.suffix((2024, 1, 5)), "2024-01-05")

    def test_suffix_from_timestamp(self) -> None:
        timestamp = time.mktime((2024, 1, 5, 12, 0, 0, 0, 0, -1))
        self.assertEqual(self.logfile.suffix(timestamp), "2024-01-05")


class OpenLogfileTests(unittest.TestCase):
    def test_plain_appends(self) -> None:
        directory = os.path.join(self.mktemp(), "log")
        for line in ("one\n", "two\n"):
            f = open_logfile(directory, "plain")
            f.write(line)
            f.close()
        with open(os.path.join(directory, LOGFILE_NAME)) as f:
            self.assertEqual(f.read(), "one\ntwo\n")

    def test_rotating(self) -> None:
        f = open_logfile(self.mktemp(), "rotating")
        self.addCleanup(f.close)
        self.assertIsInstance(f, ReplDailyLogFile)

    def test_unknown_logtype(self) -> None:
        self.assertRaises(ValueError, open_logfile, self.mktemp(), "syslog")
