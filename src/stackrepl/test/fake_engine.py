"""
In-memory deployment engine for the test suite.
"""

from __future__ import annotations

from typing import Any

from zope.interface import implementer

from twisted.internet import defer
from twisted.internet.defer import Deferred

from stackrepl.core.engine import (
    DeploymentTarget,
    DestroyResult,
    IDeploymentEngine,
    UpdateResult,
    UpdateSummary,
)


def _result(value: Any, default: Any = None) -> Deferred:
    # a configured Deferred is handed out as is, an exception fails
    if isinstance(value, Deferred):
        return value
    if isinstance(value, Exception):
        return defer.fail(value)
    return defer.succeed(default)


@implementer(IDeploymentEngine)
class FakeEngine:
    """
    Records every call in C{calls}. Results can be controlled per
    operation by setting the matching attribute to an exception or to a
    Deferred the test fires itself.
    """

    name = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.targets: dict[tuple[str, str], DeploymentTarget] = {}
        self.acquire_result: Any = None
        self.install_results: dict[str, Any] = {}
        self.config_result: Any = None
        self.apply_error: Exception | None = None
        self.destroy_error: Exception | None = None
        self.config: dict[str, Any] = {}

    def called(self, operation: str) -> int:
        return len([call for call in self.calls if call[0] == operation])

    def create_or_select(self, stack_name, project_name, workspace_options):
        self.calls.append(("create_or_select", stack_name, project_name))
        if self.acquire_result is not None:
            return _result(self.acquire_result)
        key = (project_name, stack_name)
        if key not in self.targets:
            self.targets[key] = DeploymentTarget(
                stack_name=stack_name,
                project_name=project_name,
                work_dir=workspace_options.get("work_dir", "."),
                workspace_options=dict(workspace_options),
            )
        return defer.succeed(self.targets[key])

    def install_dependency(self, target, name, version):
        self.calls.append(("install_dependency", name, version))
        return _result(self.install_results.get(name))

    def set_all_config(self, target, config):
        self.calls.append(("set_all_config", dict(config)))
        if self.config_result is None:
            self.config.update(config)
        return _result(self.config_result)

    def apply(self, target, program, on_output):
        self.calls.append(("apply",))
        if self.apply_error is not None:
            return defer.fail(self.apply_error)
        on_output(f"Updating ({target.stack_name})")

        def applied(outputs):
            self.calls.append(("applied", dict(outputs)))
            target.version += 1
            summary = UpdateSummary(
                kind="update",
                resource_changes={"create": len(outputs)},
                version=target.version,
            )
            return UpdateResult(summary=summary, outputs=dict(outputs))

        return defer.maybeDeferred(program).addCallback(applied)

    def destroy(self, target, on_output):
        self.calls.append(("destroy",))
        if self.destroy_error is not None:
            return defer.fail(self.destroy_error)
        on_output(f"Destroying ({target.stack_name})")
        target.version += 1
        summary = UpdateSummary(kind="destroy", version=target.version)
        return defer.succeed(DestroyResult(summary=summary))
