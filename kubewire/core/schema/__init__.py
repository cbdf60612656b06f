"""
Core schema definitions for violations and oracles.

These domain-agnostic protocols and dataclasses are shared by every
manifest check in kubewire.
"""

from kubewire.core.schema.oracle import Oracle
from kubewire.core.schema.violation import Violation, ViolationEvidence

__all__ = [
    "Oracle",
    "Violation",
    "ViolationEvidence",
]
