"""
File backed deployment engine.

Keeps the state of every stack in a JSON document under the workspace:

    <work_dir>/.stackrepl/<project>/<stack>.json

The engine provisions nothing. It records plugins and configuration, runs
the session program on apply, and tracks the session outputs as the
stack's resources, so that every update reports which outputs were
created, updated, deleted or left the same.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import time
from collections.abc import Mapping
from typing import Any

from zope.interface import implementer

from twisted.internet import defer
from twisted.internet.defer import Deferred, inlineCallbacks
from twisted.python import log

from stackrepl.core.engine import (
    ConfigMap,
    DeploymentTarget,
    DestroyResult,
    IDeploymentEngine,
    OutputCallback,
    Program,
    UpdateResult,
    UpdateSummary,
)

STATE_DIR = ".stackrepl"
NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")


class StateError(Exception):
    pass


def _serialize(value: Any) -> Any:
    """
    Outputs may be arbitrary objects, store what JSON can hold and the
    repr() of everything else.
    """
    return json.loads(json.dumps(value, default=repr))


@implementer(IDeploymentEngine)
class LocalEngine:
    name = "local"

    def __init__(self, state_dir: str = STATE_DIR) -> None:
        self.state_dir = state_dir

    def state_path(self, target: DeploymentTarget) -> str:
        return os.path.join(
            target.work_dir, self.state_dir, target.project_name, f"{target.stack_name}.json"
        )

    def _load(self, path: str) -> dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                state = json.load(f)
        except ValueError as e:
            raise StateError(f"Stack state {path} is malformed: {e}") from e
        if not isinstance(state, dict):
            raise StateError(f"Stack state {path} is malformed")
        return state

    def _save(self, path: str, state: dict[str, Any]) -> None:
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmpname = tempfile.mkstemp(dir=directory, prefix=".state-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2, sort_keys=True)
            os.replace(tmpname, path)
        except BaseException:
            try:
                os.remove(tmpname)
            except FileNotFoundError:
                pass
            raise

    def create_or_select(
        self, stack_name: str, project_name: str, workspace_options: Mapping[str, Any]
    ) -> Deferred[DeploymentTarget]:
        for label, value in (("stack", stack_name), ("project", project_name)):
            if not value or not NAME.match(value):
                return defer.fail(StateError(f"Invalid {label} name {value!r}"))

        work_dir = os.path.abspath(workspace_options.get("work_dir", "."))
        target = DeploymentTarget(
            stack_name=stack_name,
            project_name=project_name,
            work_dir=work_dir,
            workspace_options=dict(workspace_options),
        )
        path = self.state_path(target)
        try:
            if os.path.exists(path):
                state = self._load(path)
                log.msg(f"Selected existing stack {target.fully_qualified_name}")
            else:
                state = {"version": 0, "plugins": {}, "config": {}, "outputs": {}}
                self._save(path, state)
                log.msg(f"Created stack {target.fully_qualified_name}")
        except (OSError, StateError) as e:
            return defer.fail(e)

        target.version = int(state.get("version", 0))
        return defer.succeed(target)

    def install_dependency(
        self, target: DeploymentTarget, name: str, version: str
    ) -> Deferred[None]:
        path = self.state_path(target)
        try:
            state = self._load(path)
            state.setdefault("plugins", {})[name] = version
            self._save(path, state)
        except (OSError, StateError) as e:
            return defer.fail(e)
        return defer.succeed(None)

    def set_all_config(self, target: DeploymentTarget, config: ConfigMap) -> Deferred[None]:
        path = self.state_path(target)
        try:
            state = self._load(path)
            stored = state.setdefault("config", {})
            for key, value in config.items():
                stored[key] = {"value": value.value, "secret": value.secret}
            self._save(path, state)
        except (OSError, StateError) as e:
            return defer.fail(e)
        return defer.succeed(None)

    @inlineCallbacks
    def apply(
        self, target: DeploymentTarget, program: Program, on_output: OutputCallback
    ) -> Deferred[UpdateResult]:
        path = self.state_path(target)
        state = self._load(path)
        summary = UpdateSummary(kind="update")
        stdout: list[str] = []

        def emit(line: str) -> None:
            stdout.append(line)
            on_output(line)

        emit(f"Updating ({target.stack_name})")
        outputs = yield defer.maybeDeferred(program)
        outputs = dict(outputs or {})

        previous: dict[str, Any] = state.get("outputs", {})
        current = {key: _serialize(value) for key, value in outputs.items()}
        changes: dict[str, int] = {}
        for key in sorted(set(previous) | set(current)):
            if key not in previous:
                op = "create"
            elif key not in current:
                op = "delete"
            elif previous[key] != current[key]:
                op = "update"
            else:
                op = "same"
            changes[op] = changes.get(op, 0) + 1
            if op != "same":
                emit(f"    {op} output {key}")

        state["outputs"] = current
        state["version"] = int(state.get("version", 0)) + 1
        self._save(path, state)

        target.version = state["version"]
        summary.resource_changes = changes
        summary.version = target.version
        summary.end_time = time.time()
        emit(f"Update complete, version {target.version}")
        return UpdateResult(summary=summary, stdout=stdout, outputs=outputs)

    def destroy(self, target: DeploymentTarget, on_output: OutputCallback) -> Deferred[DestroyResult]:
        path = self.state_path(target)
        summary = UpdateSummary(kind="destroy")
        stdout: list[str] = []
        try:
            state = self._load(path)
            removed = len(state.get("outputs", {}))
            state["outputs"] = {}
            state["version"] = int(state.get("version", 0)) + 1
            self._save(path, state)
        except (OSError, StateError) as e:
            return defer.fail(e)

        for line in (f"Destroying ({target.stack_name})", f"    delete {removed} outputs"):
            stdout.append(line)
            on_output(line)

        target.version = state["version"]
        summary.resource_changes = {"delete": removed} if removed else {}
        summary.version = target.version
        summary.end_time = time.time()
        return defer.succeed(DestroyResult(summary=summary, stdout=stdout))
