"""Violation model for representing failed manifest checks."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

SEVERITIES = ("error", "warning", "info")


@dataclass
class ViolationEvidence:
    """Standardized evidence structure for violations.

    Oracles attach the object and reference that caused a violation so the
    report can point at both sides of a broken cross-reference.

    Attributes:
        kind: Kind of the object the violation was found on
        name: Name of that object
        namespace: Namespace of that object
        reference: The reference that failed, e.g. ``secret/mongo-secret:mongo-user``
        expected: What the check expected to find
        actual: What it found instead
    """

    kind: Optional[str] = None
    name: Optional[str] = None
    namespace: Optional[str] = None
    reference: Optional[str] = None
    expected: Optional[Any] = None
    actual: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert evidence to dictionary format, dropping unset fields."""
        result = {}
        for key in ("kind", "name", "namespace", "reference", "expected", "actual"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


@dataclass
class Violation:
    """Represents one failed manifest check.

    Violations are returned by oracles and contain information about what
    went wrong and where it occurred.

    Attributes:
        id: Dotted identifier, ``<family>.<CODE>`` (e.g. "reference.MISSING_KEY")
        message: Human-readable description of the violation
        path: Location path as list of strings (e.g. ["webapp.yaml", "Deployment", "webapp-deployment"])
        severity: Severity level - "error", "warning", or "info"
        evidence: Check-specific data; a dict or ViolationEvidence
    """

    id: str
    message: str
    path: List[str]
    severity: str = "error"
    evidence: Union[Dict[str, Any], ViolationEvidence, None] = None

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity {self.severity!r}, expected one of {SEVERITIES}")

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def get_evidence(self) -> ViolationEvidence:
        """Get evidence as standardized ViolationEvidence object.

        Dict evidence is filtered to the known fields; unknown keys are dropped.

        Returns:
            ViolationEvidence object (empty if no evidence)
        """
        if isinstance(self.evidence, ViolationEvidence):
            return self.evidence

        if isinstance(self.evidence, dict):
            valid_fields = set(ViolationEvidence.__dataclass_fields__)
            filtered_dict = {k: v for k, v in self.evidence.items() if k in valid_fields}
            return ViolationEvidence(**filtered_dict)

        return ViolationEvidence()

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form used by ``kubewire validate --json``."""
        return {
            "id": self.id,
            "severity": self.severity,
            "message": self.message,
            "path": [str(p) for p in self.path],
            "evidence": self.get_evidence().to_dict(),
        }

    def format(self) -> str:
        """One-line rendering used by the CLI report."""
        location = "/".join(str(p) for p in self.path)
        return f"[{self.severity}] {self.id}: {self.message} ({location})"
