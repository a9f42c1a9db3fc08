"""
Exceptions raised while running a stackrepl session.

Every error carries the lifecycle phase it belongs to, so that a failure
reported to the user says whether acquisition, plugin installation,
configuration, apply, destroy or eject went wrong.

Setup errors abort the session before the interactive loop starts.
Deployment errors are raised after the loop ended and carry the partial
result. Eject errors never abort anything, they are logged and attached
to the result.
"""

from __future__ import annotations

from typing import Any


class StackReplError(Exception):
    """Base exception for stackrepl."""

    phase: str = ""

    def __init__(self, message: str = "", *args: Any) -> None:
        if self.phase and message and not message.startswith(f"[{self.phase}]"):
            message = f"[{self.phase}] {message}"
        super().__init__(message, *args)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class LifecycleError(StackReplError):
    """
    The orchestrator was asked to move back to an earlier state.
    """

    phase = "lifecycle"


class SetupError(StackReplError):
    """Failure before the interactive loop started."""


class AcquisitionError(SetupError):
    """
    The deployment target could not be created or selected: the
    workspace is inaccessible or malformed.
    """

    phase = "acquisition"


class DependencyInstallError(SetupError):
    """
    One of the plugin installs failed. Carries the first failure.
    """

    phase = "install"

    def __init__(self, message: str, spec: Any = None, failure: Any = None) -> None:
        super().__init__(message)
        self.spec = spec
        self.failure = failure


class ConfigurationError(SetupError):
    """
    The initial configuration batch was rejected.
    """

    phase = "config"

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class DeploymentError(StackReplError):
    """
    Failure after the interactive loop ended. C{result} holds whatever
    the session produced before the failure.
    """

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


class ApplyError(DeploymentError):
    phase = "apply"


class DestroyError(DeploymentError):
    phase = "destroy"


class EjectError(StackReplError):
    phase = "eject"

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class EjectWriteError(EjectError):
    """
    The output directory could not be created or a file could not be
    written.
    """


class HistoryUnavailableError(EjectError):
    """
    The command log could not be located or read.
    """
