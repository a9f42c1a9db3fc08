"""
Tests for ejecting a session into a standalone program
"""

from __future__ import annotations

import json
import os

import yaml

from twisted.python import log
from twisted.trial import unittest

from stackrepl.core.eject import (
    DESCRIPTOR_FILENAME,
    MANIFEST_FILENAME,
    PROGRAM_FILENAME,
    Ejector,
    read_history,
)
from stackrepl.core.errors import EjectWriteError, HistoryUnavailableError
from stackrepl.core.history import CommandLog


def a():
    pass


def b():
    pass


VERSIONS = {"pulumi": ("pulumi", "3.100.0"), "json": None}


def resolve_version(module):
    return VERSIONS.get(module)


class EjectorTests(unittest.TestCase):
    def setUp(self) -> None:
        base = self.mktemp()
        self.history = CommandLog(os.path.join(base, "history"))
        self.directory = os.path.join(base, "eject")
        self.ejector = Ejector(
            self.directory,
            runtime="python",
            export="pulumi.export",
            resolve_version=resolve_version,
        )

    def read(self, filename: str) -> str:
        with open(os.path.join(self.directory, filename), encoding="utf-8") as f:
            return f.read()

    def test_writes_three_files(self) -> None:
        result = self.ejector.eject(self.history.path, {}, {}, "demo")
        self.assertEqual(
            sorted(os.listdir(self.directory)),
            sorted([PROGRAM_FILENAME, MANIFEST_FILENAME, DESCRIPTOR_FILENAME]),
        )
        self.assertEqual(result.directory, self.directory)
        self.assertEqual(result.program, os.path.join(self.directory, PROGRAM_FILENAME))
        self.assertEqual(result.statements, 0)

    def test_statements_in_entry_order(self) -> None:
        """
        a() entered before b() comes before it in the program, between
        the preamble and the postamble
        """
        self.history.append("a()")
        self.history.append("b()")
        result = self.ejector.eject(
            self.history.path, {"a": a, "b": b}, {"url": "http://x"}, "demo"
        )
        program = self.read(PROGRAM_FILENAME)

        imports = program.index("from stackrepl.test.test_eject import a")
        session = program.index("# session")
        first = program.index("a()\n", session)
        second = program.index("b()\n", session)
        postamble = program.index("# outputs")
        self.assertTrue(imports < session < first < second < postamble)
        self.assertIn("pulumi.export('url', outputs['url'])", program[postamble:])
        self.assertEqual(result.statements, 2)
        compile(program, PROGRAM_FILENAME, "exec")

    def test_stored_order_is_reversed(self) -> None:
        """
        The log is stored most-recent-first, the program must not be
        """
        for statement in ("x = 1", "y = x + 1", "register_output('y', y)"):
            self.history.append(statement)
        self.ejector.eject(self.history.path, {}, {"y": 2}, "demo")
        program = self.read(PROGRAM_FILENAME)
        body = program.split("# session\n", 1)[1].split("\n# outputs", 1)[0]
        self.assertEqual(body.splitlines(), ["x = 1", "y = x + 1", "register_output('y', y)"])

    def test_program_runs(self) -> None:
        """
        The ejected program executes standalone with the export function
        replaced
        """
        self.history.append("register_output('a', 1)")
        self.history.append("outputs['b'] = js.dumps([1])")
        self.history.append("exit()")
        ejector = Ejector(self.directory, export="builtins.print", resolve_version=resolve_version)
        ejector.eject(self.history.path, {"js": json}, {"a": 1, "b": "[1]"}, "demo")
        program = self.read(PROGRAM_FILENAME)

        exported = []
        namespace = {"__name__": "__main__"}
        code = compile(program.replace("builtins.print(", "export("), PROGRAM_FILENAME, "exec")
        namespace["export"] = lambda key, value: exported.append((key, value))
        exec(code, namespace)
        self.assertEqual(exported, [("a", 1), ("b", "[1]")])

    def test_manifest_pins_resolved_distributions(self) -> None:
        result = self.ejector.eject(self.history.path, {"js": json}, {}, "demo")
        self.assertEqual(self.read(MANIFEST_FILENAME), "pulumi==3.100.0\n")
        self.assertEqual(result.requirements, {"pulumi": "3.100.0"})

    def test_unpinned_modules_logged(self) -> None:
        events: list[dict] = []
        log.addObserver(events.append)
        self.addCleanup(log.removeObserver, events.append)
        self.ejector.eject(self.history.path, {"js": json, "a": a}, {}, "demo")
        unpinned = [
            event["module"]
            for event in events
            if event.get("eventid") == "stackrepl.eject.unpinned"
        ]
        self.assertEqual(unpinned, ["json", "stackrepl.test.test_eject"])

    def test_descriptor(self) -> None:
        self.ejector.eject(self.history.path, {}, {}, "demo")
        descriptor = yaml.safe_load(self.read(DESCRIPTOR_FILENAME))
        self.assertEqual(descriptor, {"name": "demo", "runtime": "python"})

    def test_directory_reused(self) -> None:
        os.makedirs(self.directory)
        self.history.append("a()")
        self.ejector.eject(self.history.path, {"a": a}, {}, "demo")
        self.history.append("b()")
        result = self.ejector.eject(self.history.path, {"a": a, "b": b}, {}, "demo")
        self.assertEqual(result.statements, 2)
        self.assertIn("b()\n", self.read(PROGRAM_FILENAME))

    def test_unreadable_history(self) -> None:
        self.assertRaises(
            HistoryUnavailableError,
            self.ejector.eject,
            os.path.join(self.mktemp(), "missing"),
            {},
            {},
            "demo",
        )
        self.assertFalse(os.path.exists(self.directory))

    def test_malformed_history(self) -> None:
        with open(self.history.path, "w") as f:
            f.write("not json\n")
        e = self.assertRaises(HistoryUnavailableError, read_history, self.history.path)
        self.assertEqual(e.path, self.history.path)
        self.assertTrue(e.message.startswith("[eject] "))

    def test_unwritable_directory(self) -> None:
        blocker = self.mktemp()
        with open(blocker, "w") as f:
            f.write("")
        ejector = Ejector(os.path.join(blocker, "eject"), resolve_version=resolve_version)
        self.assertRaises(EjectWriteError, ejector.eject, self.history.path, {}, {}, "demo")


class CapabilityImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ejector = Ejector("unused", export="pulumi.export", resolve_version=resolve_version)

    def statements(self, capabilities):
        return [statement for _, _, statement in self.ejector.capability_imports(capabilities)]

    def test_module(self) -> None:
        self.assertEqual(self.statements({"json": json}), ["import json", "import pulumi"])
        self.assertEqual(self.statements({"js": json})[0], "import json as js")

    def test_function(self) -> None:
        self.assertEqual(
            self.statements({"a": a})[0], "from stackrepl.test.test_eject import a"
        )
        self.assertEqual(
            self.statements({"first": a})[0],
            "from stackrepl.test.test_eject import a as first",
        )

    def test_method(self) -> None:
        self.assertEqual(
            self.statements({"append": CommandLog.append})[0],
            "from stackrepl.core.history import CommandLog\nappend = CommandLog.append",
        )

    def test_plain_object(self) -> None:
        self.assertEqual(
            self.statements({"answer": 42})[0],
            "answer = None  # int object, rebind before running",
        )

    def test_export_module_already_imported(self) -> None:
        imports = self.ejector.capability_imports({"pulumi": json})
        self.assertEqual(len(imports), 2)
        ejector = Ejector("unused", export="json.dumps", resolve_version=resolve_version)
        self.assertEqual(len(ejector.capability_imports({"json": json})), 1)
