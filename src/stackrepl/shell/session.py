"""
Drives one interactive session.

The runner owns the interpreter namespace and the output map, records
every statement in the command log and fires L{SessionRunner.done} with a
snapshot of the outputs when the user leaves the loop.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from twisted.internet.defer import Deferred
from twisted.python import log

from stackrepl.core.history import CommandLog
from stackrepl.core.registry import CapabilityRegistry


class SessionRunner:
    """
    Bridges the capability registry and the interactive evaluator.

    @param history: command log every accepted statement is appended to.
    @param attach: callable that connects a terminal protocol to this
        runner. Defaults to the process's stdin/stdout.
    """

    def __init__(
        self,
        history: CommandLog,
        attach: Callable[[SessionRunner], None] | None = None,
    ) -> None:
        self.history = history
        self.outputs: dict[str, Any] = {}
        self.namespace: dict[str, Any] = {}
        self.protocol = None
        self.registry: CapabilityRegistry | None = None
        self.done: Deferred[dict[str, Any]] | None = None
        self.starttime: float = 0.0
        if attach is None:
            from stackrepl.shell.protocol import attach_stdio

            attach = attach_stdio
        self._attach = attach

    def start(self, registry: CapabilityRegistry) -> Deferred[dict[str, Any]]:
        """
        Start the interactive loop. The returned Deferred fires with the
        output map once the user exits.
        """
        if self.done is not None:
            raise RuntimeError("Session already started")

        self.registry = registry
        self.namespace = {
            "outputs": self.outputs,
            "register_output": self.register_output,
            "exit": self.exit,
            "quit": self.exit,
        }
        self.namespace.update(registry.snapshot())
        self.done = Deferred()
        self.starttime = time.time()

        log.msg(
            eventid="stackrepl.session.start",
            capabilities=sorted(registry.names()),
            history=self.history.path,
            format="Session started with capabilities %(capabilities)s",
        )
        self._attach(self)
        return self.done

    def connected(self, protocol) -> None:
        """
        Called by the terminal protocol once its interpreter exists.
        From here on capabilities added to the registry show up in the
        live namespace.
        """
        self.protocol = protocol
        if self.registry is not None:
            self.registry.bind(protocol.namespace)

    def record(self, statement: str) -> None:
        log.msg(
            eventid="stackrepl.command.input",
            input=statement,
            format="CMD: %(input)s",
        )
        self.history.append(statement)

    def register_output(self, key: str, value: Any) -> None:
        """
        Set an output of the session; a later call with the same key wins.
        """
        self.outputs[key] = value

    def exit(self, *args: Any) -> None:
        """
        End the session. Only the first exit signal counts, so output
        registrations made after it are not part of the result.
        """
        if self.done is None or self.done.called:
            return

        snapshot = dict(self.outputs)
        log.msg(
            eventid="stackrepl.session.closed",
            duration=time.time() - self.starttime,
            statements=len(self.history),
            outputs=sorted(snapshot),
            format="Exit signal received after %(statements)s statements, "
            "outputs: %(outputs)s",
        )
        if self.registry is not None:
            self.registry.unbind()
        protocol, self.protocol = self.protocol, None
        self.done.callback(snapshot)
        if protocol is not None:
            protocol.disconnect()
