"""
Capabilities exposed to the interactive session.

A capability is any object (typically a provider SDK module) made
available by name in the interpreter namespace.
"""

from __future__ import annotations

import sys
import traceback
from collections.abc import Iterator, Mapping, MutableMapping
from importlib import import_module
from typing import Any

from twisted.python import log


class CapabilityRegistry:
    """
    Mapping from capability name to an opaque object.

    Capabilities can be added at any time. Adding a name that already
    exists replaces the previous object. There is no removal. Once the
    registry is bound to a live namespace, later additions are written
    into that namespace too.
    """

    def __init__(self, capabilities: Mapping[str, Any] | None = None) -> None:
        self._capabilities: dict[str, Any] = {}
        self._namespace: MutableMapping[str, Any] | None = None
        if capabilities:
            for name, value in capabilities.items():
                self.add_capability(name, value)

    def add_capability(self, name: str, value: Any) -> None:
        if not name or not name.isidentifier():
            raise ValueError(f"Capability name {name!r} is not a valid identifier")
        self._capabilities[name] = value
        if self._namespace is not None:
            self._namespace[name] = value

    def bind(self, namespace: MutableMapping[str, Any]) -> None:
        """
        Expose every capability in C{namespace} and keep it in sync with
        capabilities added later.
        """
        namespace.update(self._capabilities)
        self._namespace = namespace

    def unbind(self) -> None:
        self._namespace = None

    def get(self, name: str, default: Any = None) -> Any:
        return self._capabilities.get(name, default)

    def names(self) -> list[str]:
        return list(self._capabilities)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._capabilities)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._capabilities))

    def __len__(self) -> int:
        return len(self._capabilities)

    def __repr__(self) -> str:
        return f"<CapabilityRegistry {sorted(self._capabilities)!r}>"


def load_capabilities(
    modules: Mapping[str, str], registry: CapabilityRegistry | None = None
) -> CapabilityRegistry:
    """
    Import each C{name = module} pair and register the module under
    C{name}. Modules that cannot be imported are logged and skipped, so a
    missing provider SDK does not prevent the shell from starting.
    """
    if registry is None:
        registry = CapabilityRegistry()

    for name, module_name in modules.items():
        try:
            module = import_module(module_name)
        except ImportError as e:
            exc_type, exc_value, exc_traceback = sys.exc_info()
            log.err(
                "Failed to import capability {} ({}): {}: {}".format(
                    name,
                    module_name,
                    e,
                    "".join(
                        traceback.format_exception(exc_type, exc_value, exc_traceback)
                    ),
                )
            )
            continue
        registry.add_capability(name, module)
        log.msg(
            eventid="stackrepl.capability.loaded",
            name=name,
            module=module_name,
            format="Loaded capability %(name)s from %(module)s",
        )

    return registry
