"""
Operations layer - guards and actions for every provisioning step.

Each function takes a StepContext and either answers a question about the
host (guards, verifications) or changes it (actions). Workflow factories
combine them into Steps; the CLI also calls the service and build-env
helpers directly.
"""

from . import build_env, hardening, node, operator, sandbox

__all__ = [
    "build_env",
    "hardening",
    "node",
    "operator",
    "sandbox",
]
