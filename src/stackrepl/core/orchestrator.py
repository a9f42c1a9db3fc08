"""
Session lifecycle.

L{StackRepl} acquires the deployment target, installs plugins and applies
the initial configuration concurrently, waits for both, then asks the
engine to apply the target with the interactive session as its program.
When the user leaves the loop the session is applied, destroyed when it
is ephemeral, and ejected when asked.

Example:

    repl = StackRepl(ReplArgs(stack="dev", project="demo", ephemeral=True))
    repl.add_capability("random", pulumi_random)
    d = repl.start()
"""

from __future__ import annotations

import enum
import json
import os
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from twisted.internet import defer
from twisted.internet.defer import Deferred, inlineCallbacks
from twisted.python import failure, log

from stackrepl.core.config import ReplConfig
from stackrepl.core.eject import EjectResult, Ejector
from stackrepl.core.engine import (
    ConfigMap,
    ConfigValue,
    DependencySpec,
    DeploymentTarget,
    DestroyResult,
    IDeploymentEngine,
    UpdateResult,
)
from stackrepl.core.errors import (
    AcquisitionError,
    ApplyError,
    ConfigurationError,
    DependencyInstallError,
    DeploymentError,
    DestroyError,
    EjectError,
    LifecycleError,
    SetupError,
)
from stackrepl.core.history import CommandLog
from stackrepl.core.registry import CapabilityRegistry, load_capabilities
from stackrepl.shell.session import SessionRunner

CONFIG_KEY = re.compile(r"^[A-Za-z0-9_.\-]+(:[A-Za-z0-9_.\-]+)?$")


class LifecycleState(enum.Enum):
    CREATED = "created"
    TARGET_ACQUIRED = "target-acquired"
    DEPENDENCIES_AND_CONFIG_READY = "dependencies-and-config-ready"
    SESSION_RUNNING = "session-running"
    APPLIED = "applied"
    DESTROYED = "destroyed"
    SKIPPED = "skipped"
    EJECTED = "ejected"
    TERMINATED = "terminated"


# DESTROYED and SKIPPED are alternatives
_RANK: dict[LifecycleState, int] = {
    LifecycleState.CREATED: 0,
    LifecycleState.TARGET_ACQUIRED: 1,
    LifecycleState.DEPENDENCIES_AND_CONFIG_READY: 2,
    LifecycleState.SESSION_RUNNING: 3,
    LifecycleState.APPLIED: 4,
    LifecycleState.DESTROYED: 5,
    LifecycleState.SKIPPED: 5,
    LifecycleState.EJECTED: 6,
    LifecycleState.TERMINATED: 7,
}


@dataclass
class ReplArgs:
    # the name of the stack to create or select
    stack: str
    # the name of the project
    project: str
    # config set before the session starts, ie {"aws:region": "us-west-2"}
    config: Mapping[str, Any] | None = None
    # tear down the stack and its resources when the session ends
    ephemeral: bool = False
    # directory the workspace is initialized in, overrides
    # workspace_options["work_dir"] when given
    work_dir: str | None = None
    # write the session out as a standalone program when it ends
    eject: bool = False
    # passed verbatim to the engine
    workspace_options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Session:
    stack: str
    project: str
    work_dir: str
    ephemeral: bool
    eject: bool
    registry: CapabilityRegistry
    history: CommandLog
    outputs: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReplResult:
    # summary of the update applied when the session ended
    update_result: UpdateResult | None = None
    # summary of the destroy, only for ephemeral sessions
    destroy_result: DestroyResult | None = None
    outputs: dict[str, Any] = field(default_factory=dict)
    eject_result: EjectResult | None = None
    # non fatal failures, such as a failed eject
    errors: list[Exception] = field(default_factory=list)
    state: LifecycleState = LifecycleState.CREATED


def default_dependencies() -> list[DependencySpec]:
    return [
        DependencySpec(name, version)
        for name, version in ReplConfig.section_items("plugins").items()
    ]


def default_registry() -> CapabilityRegistry:
    return load_capabilities(ReplConfig.section_items("capabilities"))


def normalize_config(config: Mapping[str, Any]) -> ConfigMap:
    """
    Validate a configuration batch and wrap every value in a
    L{ConfigValue}. Accepts plain strings, ConfigValue instances and
    mappings of the form {"value": ..., "secret": ...}.
    """
    normalized: ConfigMap = {}
    for key, value in config.items():
        if not isinstance(key, str) or not CONFIG_KEY.match(key):
            raise ConfigurationError(f"Invalid configuration key {key!r}", key=str(key))
        if isinstance(value, ConfigValue):
            normalized[key] = value
        elif isinstance(value, str):
            normalized[key] = ConfigValue(value)
        elif isinstance(value, Mapping) and isinstance(value.get("value"), str):
            normalized[key] = ConfigValue(value["value"], bool(value.get("secret", False)))
        else:
            raise ConfigurationError(
                f"Invalid value for configuration key {key!r}: {type(value).__name__}",
                key=key,
            )
    return normalized


class StackRepl:
    """
    Orchestrates one session from target acquisition to teardown.
    """

    def __init__(
        self,
        args: ReplArgs,
        engine: IDeploymentEngine | None = None,
        registry: CapabilityRegistry | None = None,
        runner: SessionRunner | None = None,
        ejector: Ejector | None = None,
        dependencies: Iterable[DependencySpec] | None = None,
        observers: Iterable[Callable[[str], None]] = (),
    ) -> None:
        if engine is None:
            from stackrepl.engine.local import LocalEngine

            engine = LocalEngine()
        self.engine = engine
        self.args = args

        workspace_options = dict(args.workspace_options)
        if args.work_dir:
            workspace_options["work_dir"] = args.work_dir
        workspace_options.setdefault("work_dir", ".")
        self.workspace_options = workspace_options

        if runner is None:
            history_path = ReplConfig.get("repl", "history_path", fallback="")
            runner = SessionRunner(CommandLog(history_path or None))
        self.runner = runner

        self.session = Session(
            stack=args.stack,
            project=args.project,
            work_dir=workspace_options["work_dir"],
            ephemeral=bool(args.ephemeral),
            eject=bool(args.eject),
            registry=registry if registry is not None else default_registry(),
            history=runner.history,
        )
        self.ejector = ejector
        self.dependencies: list[DependencySpec] = list(
            dependencies if dependencies is not None else default_dependencies()
        )
        self.observers = list(observers)
        self.state = LifecycleState.CREATED
        self.target: DeploymentTarget | None = None
        self._acquiring: list[Deferred[DeploymentTarget]] | None = None

    def add_capability(self, name: str, value: Any) -> None:
        """
        Make C{value} available as C{name} in the session. This is how
        additional provider SDKs are included.
        """
        self.session.registry.add_capability(name, value)

    def add_dependency(self, name: str, version: str) -> None:
        if self.state is not LifecycleState.CREATED:
            raise LifecycleError("Dependencies must be added before the session starts")
        self.dependencies.append(DependencySpec(name, version))

    def _transition(self, state: LifecycleState) -> None:
        if _RANK[state] <= _RANK[self.state]:
            raise LifecycleError(
                f"Cannot move from {self.state.value} back to {state.value}"
            )
        log.msg(
            eventid="stackrepl.lifecycle.transition",
            previous=self.state.value,
            state=state.value,
            format="Lifecycle %(previous)s -> %(state)s",
        )
        self.state = state

    def _on_output(self, line: str) -> None:
        """
        Progress from apply/destroy. Read only: this may run while the
        loop is active, so it never touches the registry or the outputs.
        """
        log.msg(eventid="stackrepl.deploy.output", line=line, format="%(line)s")
        for observer in self.observers:
            observer(line)

    def _require_target(self) -> DeploymentTarget:
        if self.target is None:
            raise LifecycleError("The deployment target has not been acquired")
        return self.target

    # -- Setup --

    def acquire_target(
        self,
        stack_name: str | None = None,
        project_name: str | None = None,
        workspace_options: Mapping[str, Any] | None = None,
    ) -> Deferred[DeploymentTarget]:
        """
        Create or select the stack. Only one target is ever acquired;
        later calls fire with the same target.
        """
        if self.target is not None:
            return defer.succeed(self.target)

        waiter: Deferred[DeploymentTarget] = Deferred()
        if self._acquiring is not None:
            self._acquiring.append(waiter)
            return waiter
        self._acquiring = [waiter]

        stack_name = stack_name or self.session.stack
        project_name = project_name or self.session.project
        options = dict(workspace_options or self.workspace_options)
        work_dir = options.get("work_dir", ".")

        if not os.path.isdir(work_dir):
            d: Deferred[DeploymentTarget] = defer.fail(
                AcquisitionError(f"Work directory {work_dir!r} is not accessible")
            )
        else:
            d = defer.maybeDeferred(
                self.engine.create_or_select, stack_name, project_name, options
            )
        d.addCallbacks(self._acquired, self._acquisition_failed)
        return waiter

    def _acquired(self, target: DeploymentTarget) -> None:
        self.target = target
        self._transition(LifecycleState.TARGET_ACQUIRED)
        log.msg(
            eventid="stackrepl.target.acquired",
            target=target.fully_qualified_name,
            version=target.version,
            format="Selected stack %(target)s (version %(version)s)",
        )
        waiters, self._acquiring = self._acquiring or [], None
        for waiter in waiters:
            waiter.callback(target)

    def _acquisition_failed(self, f: failure.Failure) -> None:
        if f.check(AcquisitionError):
            err = f.value
        else:
            err = AcquisitionError(
                f"Cannot create or select stack {self.session.stack!r}: {f.getErrorMessage()}"
            )
        waiters, self._acquiring = self._acquiring or [], None
        for waiter in waiters:
            waiter.errback(err)

    def install_dependencies(self, specs: Iterable[DependencySpec]) -> Deferred[None]:
        """
        Install every plugin concurrently. Fails with the first
        L{DependencyInstallError}; installs still running are not
        cancelled.
        """
        target = self._require_target()
        ds = []
        for spec in specs:
            log.msg(
                eventid="stackrepl.plugin.install",
                plugin=str(spec),
                format="Installing plugin %(plugin)s",
            )
            d = defer.maybeDeferred(
                self.engine.install_dependency, target, spec.name, spec.version
            )
            d.addErrback(self._install_failed, spec)
            ds.append(d)

        d = defer.gatherResults(ds, consumeErrors=True)
        d.addErrback(_first_error)
        d.addCallback(lambda _: None)
        return d

    def _install_failed(self, f: failure.Failure, spec: DependencySpec) -> None:
        raise DependencyInstallError(
            f"Installing plugin {spec} failed: {f.getErrorMessage()}",
            spec=spec,
            failure=f,
        )

    def apply_config(self, config: Mapping[str, Any] | None) -> Deferred[None]:
        """
        Apply the configuration as one batch. Nothing to do without
        configuration.
        """
        if not config:
            return defer.succeed(None)
        try:
            normalized = normalize_config(config)
        except ConfigurationError:
            return defer.fail()

        target = self._require_target()
        log.msg(
            eventid="stackrepl.config.set",
            keys=sorted(normalized),
            format="Setting configuration %(keys)s",
        )
        d = defer.maybeDeferred(self.engine.set_all_config, target, normalized)
        d.addErrback(self._config_failed)
        d.addCallback(lambda _: None)
        return d

    def _config_failed(self, f: failure.Failure) -> None:
        if f.check(ConfigurationError):
            f.raiseException()
        raise ConfigurationError(
            f"Setting configuration failed: {f.getErrorMessage()}"
        )

    # -- Session --

    def run_session(self, program: Callable[[], Any]) -> Deferred[UpdateResult]:
        """
        Apply the target with C{program} as the deployment program.
        """
        target = self._require_target()

        def session_program():
            self._transition(LifecycleState.SESSION_RUNNING)
            return program()

        log.msg(eventid="stackrepl.apply.start", format="Starting update")
        d = defer.maybeDeferred(self.engine.apply, target, session_program, self._on_output)
        d.addCallbacks(self._applied, self._apply_failed)
        return d

    def _applied(self, result: UpdateResult) -> UpdateResult:
        self._transition(LifecycleState.APPLIED)
        log.msg(
            eventid="stackrepl.apply.complete",
            changes=json.dumps(result.summary.resource_changes, indent=4, sort_keys=True),
            format="Update complete, summary:\n%(changes)s",
        )
        return result

    def _apply_failed(self, f: failure.Failure) -> None:
        raise ApplyError(f"Update of stack {self.session.stack!r} failed: {f.getErrorMessage()}")

    def _session_program(self) -> Deferred[dict[str, Any]]:
        d = self.runner.start(self.session.registry)
        d.addCallback(self._collect_outputs)
        return d

    def _collect_outputs(self, outputs: dict[str, Any]) -> dict[str, Any]:
        self.session.outputs = outputs
        return outputs

    # -- Teardown --

    def teardown(self, target: DeploymentTarget) -> Deferred[DestroyResult]:
        log.msg(
            eventid="stackrepl.destroy.start",
            target=target.fully_qualified_name,
            format="Destroying ephemeral stack %(target)s",
        )
        d = defer.maybeDeferred(self.engine.destroy, target, self._on_output)
        d.addCallbacks(self._destroyed, self._destroy_failed)
        return d

    def _destroyed(self, result: DestroyResult) -> DestroyResult:
        self._transition(LifecycleState.DESTROYED)
        log.msg(eventid="stackrepl.destroy.complete", format="Destroy complete")
        return result

    def _destroy_failed(self, f: failure.Failure) -> None:
        raise DestroyError(f"Destroy of stack {self.session.stack!r} failed: {f.getErrorMessage()}")

    def eject(self) -> EjectResult:
        ejector = self.ejector
        if ejector is None:
            directory = ReplConfig.getpath(
                "eject", "path", base=self.session.work_dir, fallback="eject"
            )
            ejector = Ejector(directory)

        result = ejector.eject(
            self.session.history.path,
            self.session.registry.snapshot(),
            self.session.outputs,
            self.session.project,
        )
        self._transition(LifecycleState.EJECTED)
        return result

    def _terminate(self, result: ReplResult) -> None:
        self.session.history.cleanup()
        self._transition(LifecycleState.TERMINATED)
        result.state = self.state

    # -- Task graph --

    @inlineCallbacks
    def start(self) -> Deferred[ReplResult]:
        """
        Run the session. Fires with a L{ReplResult}; fails with the setup
        error before the loop starts, or with an L{ApplyError} or
        L{DestroyError} whose C{result} holds the partial result.
        """
        result = ReplResult()
        deployment_error: DeploymentError | None = None

        try:
            log.msg(eventid="stackrepl.setup.start", format="Configuring stack...")
            try:
                target = yield self.acquire_target()
                yield defer.gatherResults(
                    [
                        self.install_dependencies(self.dependencies),
                        self.apply_config(self.args.config),
                    ],
                    consumeErrors=True,
                ).addErrback(_first_error)
            except SetupError as e:
                log.msg(
                    eventid="stackrepl.setup.failed",
                    phase=e.phase,
                    error=e.message,
                    format="Setup failed: %(error)s",
                )
                raise
            self._transition(LifecycleState.DEPENDENCIES_AND_CONFIG_READY)

            try:
                result.update_result = yield self.run_session(self._session_program)
            except ApplyError as e:
                deployment_error = e
            result.outputs = dict(self.session.outputs)

            if deployment_error is None:
                if self.session.ephemeral:
                    try:
                        result.destroy_result = yield self.teardown(target)
                    except DestroyError as e:
                        deployment_error = e
                else:
                    self._transition(LifecycleState.SKIPPED)

            if self.session.eject:
                try:
                    result.eject_result = self.eject()
                except EjectError as e:
                    log.err(e, "Eject skipped")
                    result.errors.append(e)
        finally:
            self._terminate(result)

        if deployment_error is not None:
            log.msg(
                eventid="stackrepl.deploy.failed",
                phase=deployment_error.phase,
                error=deployment_error.message,
                format="Deployment failed: %(error)s",
            )
            deployment_error.result = result
            raise deployment_error
        return result


def _first_error(f: failure.Failure) -> failure.Failure:
    """
    Unwrap the failure of the first Deferred that failed in a
    gatherResults() call.
    """
    f.trap(defer.FirstError)
    return f.value.subFailure
