"""Exceptions raised by kubewire."""

from typing import Any, List, Optional

INVALID_YAML = "INVALID_YAML"
INVALID_MANIFEST = "INVALID_MANIFEST"
INVALID_BASE64 = "INVALID_BASE64"
NOT_FOUND = "NOT_FOUND"


class KubewireError(Exception):
    """Base class for every kubewire error."""


class ManifestError(KubewireError):
    """Raised when a manifest cannot be loaded or modelled.

    Covers unreadable YAML, documents without ``kind`` or ``metadata.name``,
    fields of the wrong shape, Secret data that is not valid base64, and
    manifest files missing from the apply set.

    Attributes:
        message: Description of the failure
        path: File the failure was found in (optional)
        code: One of INVALID_YAML, INVALID_MANIFEST, INVALID_BASE64, NOT_FOUND
    """

    def __init__(self, message: str, path: Optional[str] = None, code: str = INVALID_MANIFEST) -> None:
        if path:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path
        self.code = code


class ConfigError(KubewireError):
    """Raised when a kubewire.json or environment setting has an unusable value."""


class ReferenceResolutionError(KubewireError):
    """Raised when an environment reference cannot be resolved.

    The message mirrors what the orchestrator reports on the pod, and
    ``reason`` is the container waiting reason it would show.

    Attributes:
        message: Description of the failure
        reference: The KeyRef or EnvFromSource that failed (optional)
        reason: Container waiting reason
    """

    def __init__(
        self,
        message: str,
        reference: Optional[Any] = None,
        reason: str = "CreateContainerConfigError",
    ) -> None:
        super().__init__(message)
        self.reference = reference
        self.reason = reason


class KubectlError(KubewireError):
    """Raised when a kubectl or minikube invocation fails.

    Attributes:
        command: Argument list that was run
        returncode: Exit status (None when the binary could not be started)
        stderr: Captured standard error
    """

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr
