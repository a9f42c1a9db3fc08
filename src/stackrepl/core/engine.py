"""
The seam between stackrepl and the deployment engine.

The engine owns the live state of a deployment ("stack"). stackrepl only
needs five operations from it, described by L{IDeploymentEngine}. All of
them return Twisted Deferreds.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from zope.interface import Attribute, Interface

# the session program: called by the engine during apply, fires with the
# output map once the interactive loop ends
Program = Callable[[], Any]
OutputCallback = Callable[[str], None]


@dataclass(frozen=True)
class DependencySpec:
    """A plugin the deployment target needs, pinned to a version."""

    name: str
    version: str

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass(frozen=True)
class ConfigValue:
    """A configuration value. Secret values are never logged."""

    value: str
    secret: bool = False

    def __repr__(self) -> str:
        if self.secret:
            return "ConfigValue(value='[secret]', secret=True)"
        return f"ConfigValue(value={self.value!r})"


ConfigMap = dict[str, ConfigValue]


@dataclass
class DeploymentTarget:
    """A named, versioned deployment context tracked by the engine."""

    stack_name: str
    project_name: str
    work_dir: str = "."
    workspace_options: dict[str, Any] = field(default_factory=dict)
    version: int = 0

    @property
    def fully_qualified_name(self) -> str:
        return f"{self.project_name}/{self.stack_name}"


@dataclass
class UpdateSummary:
    """Summary of one apply or destroy run."""

    kind: str
    result: str = "succeeded"
    resource_changes: dict[str, int] = field(default_factory=dict)
    version: int = 0
    start_time: float = field(default_factory=time.time)
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        if not self.end_time:
            return 0.0
        return self.end_time - self.start_time


@dataclass
class UpdateResult:
    summary: UpdateSummary
    stdout: list[str] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)


@dataclass
class DestroyResult:
    summary: UpdateSummary
    stdout: list[str] = field(default_factory=list)


class IDeploymentEngine(Interface):
    """
    A deployment engine able to provision and tear down a stack.
    """

    name = Attribute("Short engine identifier used in log messages")

    def create_or_select(
        stack_name: str, project_name: str, workspace_options: Mapping[str, Any]
    ):
        """
        Return a Deferred firing with the L{DeploymentTarget} for the
        given stack, creating it when it does not exist yet.
        """

    def install_dependency(target: DeploymentTarget, name: str, version: str):
        """
        Install one plugin into the target's workspace. Returns a Deferred.
        """

    def set_all_config(target: DeploymentTarget, config: ConfigMap):
        """
        Apply the whole configuration map as one batch. Returns a Deferred.
        """

    def apply(target: DeploymentTarget, program: Program, on_output: OutputCallback):
        """
        Run C{program} against the target and provision what it declares.
        C{on_output} may be called any number of times with progress lines.
        Returns a Deferred firing with an L{UpdateResult}.
        """

    def destroy(target: DeploymentTarget, on_output: OutputCallback):
        """
        Tear down everything the target provisioned. Returns a Deferred
        firing with a L{DestroyResult}.
        """
