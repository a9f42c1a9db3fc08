#!/usr/bin/env python

"""
Start an interactive session against a deployment stack.

    stackrepl --stack dev --project demo --config aws:region=us-west-2

Statements are evaluated as Python. Call register_output(key, value) or
assign outputs[key] to export values, and exit() or Ctrl-D to finish the
session and apply it.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import NoReturn

from twisted.internet import reactor
from twisted.logger import globalLogBeginner
from twisted.python import failure

from stackrepl.core.engine import ConfigValue
from stackrepl.core.errors import DeploymentError, StackReplError
from stackrepl.core.orchestrator import ReplArgs, ReplResult, StackRepl
from stackrepl.python.logfile import logger


def parse_pair(pair: str) -> tuple[str, str]:
    key, sep, value = pair.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {pair!r}")
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Interactive deployment stack shell")
    parser.add_argument("--stack", required=True, help="Stack to create or select")
    parser.add_argument("--project", required=True, help="Project name")
    parser.add_argument(
        "--config",
        action="append",
        type=parse_pair,
        default=[],
        metavar="KEY=VALUE",
        help="Configuration set before the session starts (repeatable)",
    )
    parser.add_argument(
        "--secret",
        action="append",
        type=parse_pair,
        default=[],
        metavar="KEY=VALUE",
        help="Secret configuration value (repeatable)",
    )
    parser.add_argument(
        "--ephemeral",
        action="store_true",
        help="Destroy the stack and its resources when the session ends",
    )
    parser.add_argument(
        "--eject",
        action="store_true",
        help="Write the session out as a standalone program when it ends",
    )
    parser.add_argument(
        "--work-dir", default=None, help="Directory the workspace is initialized in"
    )
    return parser


def report(result: ReplResult) -> None:
    if result.update_result is not None:
        print("update summary:")
        print(json.dumps(result.update_result.summary.resource_changes, indent=4))
    if result.destroy_result is not None:
        print("destroy summary:")
        print(json.dumps(result.destroy_result.summary.resource_changes, indent=4))
    if result.outputs:
        print("outputs:")
        for key, value in result.outputs.items():
            print(f"    {key}: {value!r}")
    if result.eject_result is not None:
        print(f"ejected to {result.eject_result.directory}")
    for error in result.errors:
        print(f"warning: {error}")


def main() -> NoReturn:
    args = build_parser().parse_args()
    config: dict[str, ConfigValue] = {k: ConfigValue(v) for k, v in args.config}
    config.update({k: ConfigValue(v, secret=True) for k, v in args.secret})

    globalLogBeginner.beginLoggingTo([logger()], redirectStandardIO=False)

    repl = StackRepl(
        ReplArgs(
            stack=args.stack,
            project=args.project,
            config=config,
            ephemeral=args.ephemeral,
            work_dir=args.work_dir,
            eject=args.eject,
        )
    )
    status = {"code": 0}

    def finished(result: ReplResult) -> None:
        report(result)

    def failed(f: failure.Failure) -> None:
        status["code"] = 1
        if f.check(DeploymentError) and f.value.result is not None:
            report(f.value.result)
        if f.check(StackReplError):
            print(f"error: {f.value}", file=sys.stderr)
        else:
            print(f"error: {f.getTraceback()}", file=sys.stderr)

    def run() -> None:
        print("configuring stack...")
        d = repl.start()
        d.addCallbacks(finished, failed)
        d.addBoth(lambda _: reactor.stop())  # type: ignore

    reactor.callWhenRunning(run)  # type: ignore
    reactor.run()  # type: ignore
    sys.exit(status["code"])


if __name__ == "__main__":
    main()
