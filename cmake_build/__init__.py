"""Profile-driven CMake build and run dispatcher."""
from __future__ import annotations

from .cli import main
from .errors import OperationResult, Outcome, Reason
from .orchestrator import IdentityKey, Orchestrator, Role
from .resolver import Resolver, Validity
from .session import Session

__all__ = [
    "IdentityKey",
    "OperationResult",
    "Orchestrator",
    "Outcome",
    "Reason",
    "Resolver",
    "Role",
    "Session",
    "Validity",
    "main",
]
