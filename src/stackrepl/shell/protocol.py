"""
Terminal protocol for the interactive session.

The statement evaluator is Twisted Conch's manhole; this module only adds
what a session needs on top of it: statements are recorded before they
are evaluated, and the end of the connection ends the session.
"""

from __future__ import annotations

import codeop
import os
import sys
from typing import TYPE_CHECKING

from twisted.conch import manhole
from twisted.conch.insults import insults
from twisted.internet import stdio
from twisted.internet.protocol import connectionDone
from twisted.python import failure, log

from stackrepl.core.config import ReplConfig

if TYPE_CHECKING:
    from stackrepl.shell.session import SessionRunner


class SessionProtocol(manhole.Manhole):
    """
    Interactive interpreter bound to a L{SessionRunner}.
    """

    def __init__(self, runner: SessionRunner) -> None:
        manhole.Manhole.__init__(self, runner.namespace)
        self.runner = runner
        prompt = ReplConfig.get("repl", "prompt", fallback="stackrepl>").strip()
        self.ps = (prompt.encode("utf-8") + b" ", b"... ")

    def connectionMade(self) -> None:
        manhole.Manhole.connectionMade(self)
        self.runner.connected(self)

    def lineReceived(self, line: bytes) -> None:
        """
        Record the statement, then evaluate it. Recording first keeps a
        statement that ends the session in the log. Lines the interpreter
        rejects as syntax errors are evaluated (to show the error) but not
        recorded.
        """
        string = line.decode("utf-8", errors="replace")
        if string.strip() and self.compiles(line):
            self.runner.record(string)
        manhole.Manhole.lineReceived(self, line)

    def compiles(self, line: bytes) -> bool:
        """
        Whether C{line}, appended to the pending block, is valid so far.
        An incomplete block counts as valid.
        """
        source = b"\n".join(self.interpreter.buffer + [line])
        try:
            codeop.compile_command(source.decode("utf-8", errors="replace"), "<console>")
        except (SyntaxError, OverflowError, ValueError):
            return False
        return True

    def handle_QUIT(self) -> None:
        self.runner.exit()

    def connectionLost(self, reason: failure.Failure = connectionDone) -> None:
        manhole.Manhole.connectionLost(self, reason)
        self.runner.exit()

    def disconnect(self) -> None:
        if self.terminal is not None:
            self.terminal.loseConnection()


def attach_stdio(runner: SessionRunner) -> None:
    """
    Run the session on the controlling terminal.

    The terminal is switched to raw mode for the line editor and restored
    once the session ends.
    """
    import termios
    import tty

    fd = sys.__stdin__.fileno()
    oldSettings = termios.tcgetattr(fd)
    tty.setraw(fd)

    def restore(result):
        termios.tcsetattr(fd, termios.TCSANOW, oldSettings)
        os.write(fd, b"\r\x1bc\r")
        log.msg("Terminal restored")
        return result

    runner.done.addBoth(restore)
    stdio.StandardIO(insults.ServerProtocol(SessionProtocol, runner))
