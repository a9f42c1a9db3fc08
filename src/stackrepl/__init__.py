# stackrepl: interactive shell for exploring a deployment stack
#
# Architecture:
#   CapabilityRegistry (core/registry.py)  - objects exposed to the session
#   CommandLog (core/history.py)           - durable statement log
#   IDeploymentEngine (core/engine.py)     - the deployment engine seam
#   StackRepl (core/orchestrator.py)       - session lifecycle
#   SessionRunner (shell/session.py)       - the interactive loop
#   Ejector (core/eject.py)                - session to standalone program

from stackrepl._version import __version__
from stackrepl.core.engine import ConfigValue, DependencySpec
from stackrepl.core.orchestrator import ReplArgs, ReplResult, StackRepl

__all__ = [
    "__version__",
    "ConfigValue",
    "DependencySpec",
    "ReplArgs",
    "ReplResult",
    "StackRepl",
]
