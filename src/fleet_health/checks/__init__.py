"""
Host checks.

Each check declares which hosts it applies to and returns a structured
payload from a read-only remote operation.
"""

from .base import CheckRegistry, CheckSpec, ScriptCheck, NOT_APPLICABLE
from .windows import default_registry

__all__ = [
    "CheckRegistry",
    "CheckSpec",
    "ScriptCheck",
    "NOT_APPLICABLE",
    "default_registry",
]
