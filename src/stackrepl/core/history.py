"""
Durable record of the statements entered during a session.

The log is a text file with one JSON encoded statement per line. New
records are written at the top of the file, so the file reads
most-recent-first. Readers that need the entry order must reverse it,
see L{stackrepl.core.eject.read_history}.

Every append rewrites the file through a temporary file and os.replace(),
so the file on disk is always a complete log, even when the process dies
in the middle of a statement.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile

from twisted.python import log

HISTORY_FILENAME = "history"


def encode_record(statement: str) -> bytes:
    return json.dumps(statement).encode("utf-8") + b"\n"


class CommandLog:
    """
    Append-only statement log.

    @param path: file to write to. When None a fresh private directory is
        created under the system temp directory, and removed by cleanup().
    """

    def __init__(self, path: str | None = None) -> None:
        self._owned_dir: str | None = None
        if path is None:
            self._owned_dir = tempfile.mkdtemp(prefix="stackrepl-")
            os.chmod(self._owned_dir, 0o700)
            path = os.path.join(self._owned_dir, HISTORY_FILENAME)
        self.path: str = path
        self.count: int = 0

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        if not os.path.exists(self.path):
            with open(self.path, "wb"):
                pass

    def append(self, statement: str) -> None:
        """
        Persist one statement. Returns once it is on disk.
        """
        record = encode_record(statement)
        directory = os.path.dirname(os.path.abspath(self.path))

        try:
            with open(self.path, "rb") as f:
                existing = f.read()
        except FileNotFoundError:
            existing = b""

        fd, tmpname = tempfile.mkstemp(dir=directory, prefix=".history-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(record)
                f.write(existing)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmpname, self.path)
        except BaseException:
            try:
                os.remove(tmpname)
            except FileNotFoundError:
                pass
            raise

        self.count += 1

    def stored_records(self) -> list[str]:
        """
        Statements in storage order (most recent first).
        """
        with open(self.path, "rb") as f:
            return [json.loads(line) for line in f.read().splitlines() if line.strip()]

    @property
    def owned(self) -> bool:
        return self._owned_dir is not None

    def cleanup(self) -> None:
        """
        Remove the private directory created for this log. A log opened
        on a caller supplied path is left alone.
        """
        if self._owned_dir is None:
            return
        shutil.rmtree(self._owned_dir, ignore_errors=True)
        log.msg(
            eventid="stackrepl.history.removed",
            path=self._owned_dir,
            format="Removed session history %(path)s",
        )
        self._owned_dir = None

    def __len__(self) -> int:
        return self.count

    def __repr__(self) -> str:
        return f"<CommandLog {self.path!r} ({self.count} entries)>"
