"""Oracle protocol for verification functions."""

from typing import Any, List, Protocol

from kubewire.core.schema.violation import Violation


class Oracle(Protocol):
    """Verification function interface.

    An oracle is a callable that checks an artifact and returns a list of
    violations. Each oracle covers one aspect of a manifest set: parse
    errors, Service selectors, ConfigMap/Secret references, port wiring,
    or the Kubernetes OpenAPI schema.

    Example:
        def my_oracle(artifact: ManifestSet) -> List[Violation]:
            violations = []
            # ... verification logic ...
            return violations
    """

    def __call__(self, artifact: Any) -> List[Violation]:
        """Check artifact and return violations.

        Args:
            artifact: The artifact to verify

        Returns:
            List of violations found during verification.
            Empty list if artifact passes all checks.
        """
        ...
