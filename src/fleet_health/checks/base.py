"""
Base classes for host checks.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .._types import Host
from ..session import RemoteSession

NOT_APPLICABLE = "not applicable"


class CheckSpec(ABC):
    """
    Base class for checks.

    A check is a pure description plus an execute callback. Implementations
    must not keep mutable state across hosts: the same instance runs
    concurrently for every host in the fleet.
    """

    #: Per-check timeout override in seconds; None uses the run default.
    timeout_seconds: Optional[float] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier for this check."""
        pass

    @property
    def description(self) -> str:
        return ""

    def applies_to(self, host: Host) -> bool:
        """Check if this check is meaningful for the host."""
        return True

    def not_applicable_reason(self, host: Host) -> str:
        return NOT_APPLICABLE

    @abstractmethod
    async def execute(self, host: Host, session: RemoteSession) -> Any:
        """
        Run this check against a host over an open session.

        Returns the success payload; raises on failure.
        """
        pass

    def evaluate(self, payload: Any) -> List[str]:
        """Health warnings derived from a success payload."""
        return []


Evaluator = Callable[[Any], List[str]]


class ScriptCheck(CheckSpec):
    """
    Check defined by a PowerShell detection script that emits JSON.

    Read-only by construction: scripts only query state.
    """

    def __init__(
        self,
        name: str,
        script: str,
        description: str = "",
        domain_controllers_only: bool = False,
        requires_desktop_shell: bool = False,
        timeout_seconds: Optional[float] = None,
        evaluator: Optional[Evaluator] = None,
    ):
        self._name = name
        self._description = description
        self.script = script
        self.domain_controllers_only = domain_controllers_only
        self.requires_desktop_shell = requires_desktop_shell
        self.timeout_seconds = timeout_seconds
        self._evaluator = evaluator

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def applies_to(self, host: Host) -> bool:
        if self.domain_controllers_only and not host.is_domain_controller:
            return False
        if self.requires_desktop_shell and host.is_core_install:
            return False
        return True

    def not_applicable_reason(self, host: Host) -> str:
        if self.domain_controllers_only and not host.is_domain_controller:
            return f"{NOT_APPLICABLE}: domain controllers only"
        if self.requires_desktop_shell and host.is_core_install:
            return f"{NOT_APPLICABLE}: requires desktop shell (core installation)"
        return NOT_APPLICABLE

    async def execute(self, host: Host, session: RemoteSession) -> Any:
        return await session.run_json(self.script, timeout=self.timeout_seconds)

    def evaluate(self, payload: Any) -> List[str]:
        if self._evaluator is None:
            return []
        return self._evaluator(payload)

    def __repr__(self) -> str:
        return f"ScriptCheck({self._name!r})"


class CheckRegistry:
    """
    Fixed, ordered set of checks.

    Order is insertion order and only affects report layout. The registry
    is static configuration: built once, then only iterated.
    """

    def __init__(self, checks: Iterable[CheckSpec]):
        checks = tuple(checks)
        seen = set()
        for check in checks:
            if check.name in seen:
                raise ValueError(f"Duplicate check name in registry: {check.name}")
            seen.add(check.name)
        self._checks: Tuple[CheckSpec, ...] = checks

    def __iter__(self) -> Iterator[CheckSpec]:
        return iter(self._checks)

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, name: str) -> bool:
        return any(c.name == name for c in self._checks)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self._checks]

    def get(self, name: str) -> Optional[CheckSpec]:
        for check in self._checks:
            if check.name == name:
                return check
        return None

    def select(
        self,
        include: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> "CheckRegistry":
        """
        New registry restricted to ``include`` and without ``exclude``.

        Registry order is preserved. Unknown names raise ValueError.
        """
        include = list(include) if include else None
        exclude = list(exclude or [])
        unknown = [n for n in (include or []) + exclude if n not in self]
        if unknown:
            raise ValueError(f"Unknown check(s): {', '.join(unknown)}")

        selected = [
            c for c in self._checks
            if (include is None or c.name in include) and c.name not in exclude
        ]
        return CheckRegistry(selected)

    def describe(self) -> List[Dict[str, Any]]:
        """List checks for display."""
        return [
            {
                "name": c.name,
                "description": c.description,
                "timeout_seconds": c.timeout_seconds,
            }
            for c in self._checks
        ]
