# -*- test-case-name: stackrepl.test.test_logfile -*-

"""
Log destination for the command line tool.

The terminal belongs to the interactive session, so log events go to
<log_path>/stackrepl.log instead of stdout: appended to a single file
(logtype = plain) or rolled over every day (logtype = rotating).
"""

from __future__ import annotations

from os import environ, makedirs
from typing import IO

from twisted.logger import ILogObserver, textFileLogObserver
from twisted.python import logfile

from stackrepl.core.config import ReplConfig

LOGFILE_NAME = "stackrepl.log"


class ReplDailyLogFile(logfile.DailyLogFile):
    """
    Daily log file whose rotated copies are named stackrepl.log.YYYY-MM-DD
    """

    def suffix(self, tupledate: float | tuple[int, int, int]) -> str:
        if isinstance(tupledate, (int, float)):
            tupledate = self.toDate(tupledate)
        year, month, day = tupledate[:3]
        return f"{year:04d}-{month:02d}-{day:02d}"


def open_logfile(directory: str, logtype: str) -> IO[str] | ReplDailyLogFile:
    makedirs(directory, exist_ok=True)
    if logtype == "rotating":
        return ReplDailyLogFile(LOGFILE_NAME, directory)
    if logtype == "plain":
        return open(f"{directory}/{LOGFILE_NAME}", "a", encoding="utf-8")
    raise ValueError(f"Unknown logtype {logtype!r}, expected plain or rotating")


def logger() -> ILogObserver:
    directory = ReplConfig.getpath("repl", "log_path", fallback=".")
    logtype = ReplConfig.get("repl", "logtype", fallback="plain")

    # Z is shorter than +0000
    if environ.get("TZ") == "UTC":
        timeFormat = "%Y-%m-%dT%H:%M:%S.%fZ"
    else:
        timeFormat = "%Y-%m-%dT%H:%M:%S.%f%z"

    return textFileLogObserver(open_logfile(directory, logtype), timeFormat=timeFormat)
