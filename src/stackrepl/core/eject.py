"""
Turn a finished session into a standalone program.

The ejected directory holds three files:

    __main__.py        preamble, the statements in the order they were
                       entered, and a postamble exporting the outputs
    requirements.txt   pinned distributions behind the preamble imports
    Pulumi.yaml        project descriptor (name and runtime)

Example:

    ejector = Ejector("/home/me/demo/eject")
    result = ejector.eject(history_path, registry, outputs, "demo")
"""

from __future__ import annotations

import inspect
import json
import os
import types
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from importlib import metadata
from typing import Any

import yaml

from twisted.python import log

from stackrepl.core.config import ReplConfig
from stackrepl.core.errors import EjectWriteError, HistoryUnavailableError

PROGRAM_FILENAME = "__main__.py"
MANIFEST_FILENAME = "requirements.txt"
DESCRIPTOR_FILENAME = "Pulumi.yaml"

VersionResolver = Callable[[str], "tuple[str, str] | None"]


def read_history(path: str) -> list[str]:
    """
    Read a command log and return its statements in the order they were
    entered.

    The log is stored most-recent-first, so the records are reversed
    here. Raises L{HistoryUnavailableError} when the file is missing or
    cannot be decoded.
    """
    try:
        with open(path, "rb") as f:
            lines = f.read().splitlines()
    except OSError as e:
        raise HistoryUnavailableError(
            f"Cannot read command log {path}: {e}", path=path
        ) from e

    records: list[str] = []
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            statement = json.loads(line)
        except ValueError as e:
            raise HistoryUnavailableError(
                f"Malformed record on line {lineno} of {path}", path=path
            ) from e
        if not isinstance(statement, str):
            raise HistoryUnavailableError(
                f"Malformed record on line {lineno} of {path}", path=path
            )
        records.append(statement)

    records.reverse()
    return records


def distribution_version(module_name: str) -> tuple[str, str] | None:
    """
    Find the installed distribution providing a top level module.
    Returns (distribution, version), or None for the standard library and
    modules that were not installed from a distribution.
    """
    top = module_name.split(".")[0]
    try:
        distributions = metadata.packages_distributions().get(top)
    except Exception as e:
        log.msg(f"Cannot inspect installed distributions: {e}")
        return None
    if not distributions:
        return None
    name = distributions[0]
    try:
        return name, metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


@dataclass
class EjectResult:
    directory: str
    program: str
    manifest: str
    descriptor: str
    statements: int = 0
    requirements: dict[str, str] = field(default_factory=dict)


class Ejector:
    """
    Writes ejected programs into a fixed output directory.

    @param directory: output directory, created when missing and reused
        when it exists.
    @param runtime: runtime identifier written to the project descriptor.
    @param export: dotted name of the function used to export outputs.
    @param resolve_version: maps a module name to (distribution, version).
    """

    def __init__(
        self,
        directory: str,
        runtime: str | None = None,
        export: str | None = None,
        resolve_version: VersionResolver = distribution_version,
    ) -> None:
        self.directory = directory
        self.runtime = runtime or ReplConfig.get("eject", "runtime", fallback="python")
        self.export = export or ReplConfig.get("eject", "export", fallback="pulumi.export")
        self.resolve_version = resolve_version

    def eject(
        self,
        history_path: str,
        capabilities: Mapping[str, Any],
        outputs: Mapping[str, Any],
        project_name: str,
    ) -> EjectResult:
        statements = read_history(history_path)

        imports = self.capability_imports(capabilities)
        program = self.render_program(imports, statements, outputs)
        requirements = self.requirements(imports)
        descriptor = yaml.safe_dump(
            {"name": project_name, "runtime": self.runtime}, sort_keys=False
        )
        manifest = "".join(
            f"{name}=={version}\n" for name, version in sorted(requirements.items())
        )

        try:
            os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            raise EjectWriteError(
                f"Cannot create eject directory {self.directory}: {e}",
                path=self.directory,
            ) from e

        result = EjectResult(
            directory=self.directory,
            program=self._write(PROGRAM_FILENAME, program),
            manifest=self._write(MANIFEST_FILENAME, manifest),
            descriptor=self._write(DESCRIPTOR_FILENAME, descriptor),
            statements=len(statements),
            requirements=requirements,
        )
        log.msg(
            eventid="stackrepl.eject.written",
            directory=self.directory,
            statements=len(statements),
            format="Ejected %(statements)s statements to %(directory)s",
        )
        return result

    def _write(self, filename: str, content: str) -> str:
        path = os.path.join(self.directory, filename)
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise EjectWriteError(f"Cannot write {path}: {e}", path=path) from e
        return path

    def capability_imports(self, capabilities: Mapping[str, Any]) -> list[tuple[str, str, str]]:
        """
        One (name, module, statement) triple per capability. The module is
        empty for objects that cannot be imported by name; their statement
        still binds the name.
        """
        imports = []
        for name, value in capabilities.items():
            module, statement = self._binding(name, value)
            imports.append((name, module, statement))

        export_module = self.export.rpartition(".")[0]
        if export_module and not any(
            module == export_module and statement.startswith("import ")
            for _, module, statement in imports
        ):
            imports.append(("", export_module, f"import {export_module}"))
        return imports

    def _binding(self, name: str, value: Any) -> tuple[str, str]:
        if isinstance(value, types.ModuleType):
            module = value.__name__
            if module == name:
                return module, f"import {module}"
            return module, f"import {module} as {name}"

        if inspect.isclass(value) or inspect.isfunction(value) or inspect.isbuiltin(value):
            module = getattr(value, "__module__", None)
            qualname = getattr(value, "__qualname__", "")
            if module and qualname and "<" not in qualname and module != "__main__":
                if "." not in qualname:
                    if qualname == name:
                        return module, f"from {module} import {qualname}"
                    return module, f"from {module} import {qualname} as {name}"
                owner, _, attr = qualname.partition(".")
                return module, f"from {module} import {owner}\n{name} = {owner}.{attr}"

        return "", f"{name} = None  # {type(value).__name__} object, rebind before running"

    def requirements(self, imports: Iterable[tuple[str, str, str]]) -> dict[str, str]:
        pinned: dict[str, str] = {}
        for _, module, _ in imports:
            if not module:
                continue
            found = self.resolve_version(module)
            if found is None:
                log.msg(
                    eventid="stackrepl.eject.unpinned",
                    module=module,
                    format="No installed distribution provides %(module)s, "
                    "left out of " + MANIFEST_FILENAME,
                )
                continue
            name, version = found
            pinned[name] = version
        return pinned

    def render_program(
        self,
        imports: Iterable[tuple[str, str, str]],
        statements: list[str],
        outputs: Mapping[str, Any],
    ) -> str:
        return "".join(
            (
                preamble(imports),
                "\n".join(statements) + ("\n" if statements else ""),
                postamble(self.export, outputs),
            )
        )


def preamble(imports: Iterable[tuple[str, str, str]]) -> str:
    lines = [statement for _, _, statement in imports]
    lines.extend(
        [
            "",
            "outputs = {}",
            "",
            "",
            "def register_output(key, value):",
            "    outputs[key] = value",
            "",
            "",
            "def exit(*args):",
            "    pass",
            "",
            "",
            "quit = exit",
            "",
            "# session",
            "",
        ]
    )
    return "\n".join(lines)


def postamble(export: str, outputs: Mapping[str, Any]) -> str:
    lines = ["", "# outputs"]
    for key in outputs:
        lines.append(f"{export}({key!r}, outputs[{key!r}])")
    return "\n".join(lines) + "\n"
