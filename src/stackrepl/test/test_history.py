"""
Tests for the command log
"""

from __future__ import annotations

import json
import os

from twisted.trial import unittest

from stackrepl.core.eject import read_history
from stackrepl.core.history import HISTORY_FILENAME, CommandLog, encode_record


class CommandLogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.path = os.path.join(self.mktemp(), HISTORY_FILENAME)
        self.history = CommandLog(self.path)

    def test_creates_empty_file(self) -> None:
        self.assertTrue(os.path.exists(self.path))
        self.assertEqual(self.history.stored_records(), [])
        self.assertEqual(len(self.history), 0)

    def test_stored_most_recent_first(self) -> None:
        """
        Each append goes to the top of the file
        """
        for statement in ("a = 1", "b = 2", "c = a + b"):
            self.history.append(statement)
        self.assertEqual(self.history.stored_records(), ["c = a + b", "b = 2", "a = 1"])
        self.assertEqual(len(self.history), 3)

    def test_read_history_reverses(self) -> None:
        """
        Reading the log back gives the entry order
        """
        for statement in ("a()", "b()"):
            self.history.append(statement)
        self.assertEqual(read_history(self.path), ["a()", "b()"])

    def test_multiline_statement_is_one_record(self) -> None:
        self.history.append('s = """x\ny"""')
        with open(self.path, "rb") as f:
            self.assertEqual(len(f.read().splitlines()), 1)
        self.assertEqual(read_history(self.path), ['s = """x\ny"""'])

    def test_encode_record(self) -> None:
        self.assertEqual(encode_record('print("hi")'), b'"print(\\"hi\\")"\n')
        self.assertEqual(json.loads(encode_record("x = 1")), "x = 1")

    def test_caller_path_survives_cleanup(self) -> None:
        self.history.append("x = 1")
        self.assertFalse(self.history.owned)
        self.history.cleanup()
        self.assertTrue(os.path.exists(self.path))


class OwnedCommandLogTests(unittest.TestCase):
    def test_private_directory(self) -> None:
        """
        Without a path the log lives in a private temporary directory
        that cleanup() removes
        """
        history = CommandLog()
        self.addCleanup(history.cleanup)
        directory = os.path.dirname(history.path)
        self.assertTrue(history.owned)
        self.assertEqual(os.path.basename(history.path), HISTORY_FILENAME)
        self.assertEqual(os.stat(directory).st_mode & 0o777, 0o700)

        history.append("x = 1")
        history.cleanup()
        self.assertFalse(os.path.exists(directory))
        self.assertFalse(history.owned)

    def test_cleanup_twice(self) -> None:
        history = CommandLog()
        history.cleanup()
        history.cleanup()
        self.assertFalse(os.path.exists(history.path))
