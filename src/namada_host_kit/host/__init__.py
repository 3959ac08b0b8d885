"""
Host layer - everything that touches the machine being provisioned.

- runner: executes one OS command with an explicit privilege context
- probes: side-effect-free idempotency guards
- files: content-addressed file writer and managed blocks
"""

from .context import Host
from .runner import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "Host",
]
