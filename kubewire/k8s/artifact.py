"""Manifest artifact implementation for YAML files.

This module provides the ManifestSet class that represents a group of
Kubernetes YAML manifests as a kubewire artifact, and the parsing of those
files into individual documents.
"""

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubewire.core.errors import INVALID_YAML, NOT_FOUND, ManifestError
from kubewire.k8s.utils import get_name, get_namespace, to_plain

logger = logging.getLogger(__name__)

MANIFEST_PATTERNS = ("*.yaml", "*.yml")


def create_yaml_instance() -> YAML:
    """Create configured ruamel.yaml instance for manifest reading and writing.

    Returns:
        YAML instance configured to:
        - Preserve quotes and formatting
        - Not wrap long strings (image references stay on one line)
        - Use block style (not flow style)
    """
    yaml = YAML()
    yaml.preserve_quotes = True
    yaml.width = 4096
    yaml.default_flow_style = False
    yaml.allow_unicode = True
    return yaml


@dataclass(frozen=True)
class ManifestDocument:
    """One YAML document from a manifest file.

    Attributes:
        filepath: Key of the file in the owning ManifestSet
        index: Position of the document inside the file (0-based)
        body: Parsed document as plain dicts and lists
    """
    filepath: str
    index: int
    body: Dict[str, Any]

    @property
    def kind(self) -> str:
        return self.body.get("kind", "")

    @property
    def name(self) -> str:
        return get_name(self.body) or ""

    @property
    def namespace(self) -> str:
        return get_namespace(self.body)

    @property
    def path(self) -> List[str]:
        """Location path used in violations: file, kind, name."""
        return [self.filepath, self.kind, self.name]


def parse_documents(filepath: str, content: str) -> List[ManifestDocument]:
    """Parse a (possibly multi-document) manifest file.

    Empty documents, such as a trailing ``---``, are skipped.

    Args:
        filepath: Name used for error reporting
        content: YAML text

    Returns:
        Documents in file order

    Raises:
        ManifestError: If the YAML is malformed or a document lacks kind or name
    """
    yaml = create_yaml_instance()
    try:
        raw_docs = list(yaml.load_all(io.StringIO(content)))
    except YAMLError as e:
        raise ManifestError(f"Failed to parse YAML: {e}", path=filepath, code=INVALID_YAML) from e

    documents = []
    for index, raw in enumerate(raw_docs):
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ManifestError(f"document {index} is not a mapping", path=filepath)
        body = to_plain(raw)
        if not body.get("kind"):
            raise ManifestError(f"document {index} has no kind", path=filepath)
        if not isinstance(body["kind"], str):
            raise ManifestError(f"document {index} kind must be a string", path=filepath)
        if not get_name(body):
            raise ManifestError(f"document {index} ({body['kind']}) has no metadata.name", path=filepath)
        if not isinstance(get_name(body), str) or not isinstance(get_namespace(body), str):
            raise ManifestError(f"document {index} ({body['kind']}) metadata.name and namespace must be strings", path=filepath)
        documents.append(ManifestDocument(filepath=filepath, index=index, body=body))
    return documents


@dataclass(frozen=True)
class ManifestSet:
    """Set of Kubernetes manifest files.

    Files are kept as text so that the exact bytes handed to
    ``kubectl apply`` are the ones that were checked.

    Attributes:
        files: Mapping from file path to YAML content as string.
               Example: ``{"mongo-config.yaml": "apiVersion: v1\\n..."}``

    Example:
        >>> manifests = ManifestSet.from_dir("manifests/")
        >>> [doc.name for doc in manifests.documents()]
        ['mongo-config', 'mongo-secret', ...]
    """
    files: Dict[str, str]

    def documents(self) -> List[ManifestDocument]:
        """Parse every file, in file order.

        Raises:
            ManifestError: On the first file that cannot be parsed
        """
        documents = []
        for filepath, content in self.files.items():
            documents.extend(parse_documents(filepath, content))
        return documents

    def merged(self, other: "ManifestSet") -> "ManifestSet":
        """New set with the files of both; ``other`` wins on equal paths."""
        files = dict(self.files)
        files.update(other.files)
        return ManifestSet(files=files)

    def without(self, *filepaths: str) -> "ManifestSet":
        """New set with the named files dropped."""
        return ManifestSet(files={k: v for k, v in self.files.items() if k not in filepaths})

    def write_to_dir(self, dir_path: str) -> List[Path]:
        """Write YAML files to a directory.

        Creates the directory if it doesn't exist.

        Args:
            dir_path: Directory path where files should be written

        Returns:
            Paths of the written files
        """
        dir_path_obj = Path(dir_path)
        dir_path_obj.mkdir(parents=True, exist_ok=True)

        written = []
        for rel_path, content in self.files.items():
            file_path = dir_path_obj / rel_path
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
            written.append(file_path)
        logger.debug(f"Wrote {len(written)} manifest files to {dir_path_obj}")
        return written

    @classmethod
    def from_file(cls, file_path: str) -> "ManifestSet":
        """Load a ManifestSet from a single YAML file.

        Raises:
            ManifestError: If the file does not exist
        """
        path = Path(file_path)
        if not path.is_file():
            raise ManifestError("manifest file not found", path=str(path), code=NOT_FOUND)
        return cls(files={path.name: path.read_text(encoding="utf-8")})

    @classmethod
    def from_dir(cls, dir_path: str, patterns: Optional[Iterable[str]] = None) -> "ManifestSet":
        """Load a ManifestSet from a directory with YAML files.

        Args:
            dir_path: Directory containing YAML files
            patterns: Glob patterns for files to include (default: ``*.yaml``, ``*.yml``)

        Raises:
            ManifestError: If the directory does not exist
        """
        dir_path_obj = Path(dir_path)
        if not dir_path_obj.is_dir():
            raise ManifestError("manifest directory not found", path=str(dir_path_obj), code=NOT_FOUND)

        files = {}
        for pattern in patterns or MANIFEST_PATTERNS:
            for file_path in sorted(dir_path_obj.glob(pattern)):
                if file_path.is_file():
                    rel_path = file_path.relative_to(dir_path_obj)
                    files[str(rel_path)] = file_path.read_text(encoding="utf-8")
        return cls(files=files)

    @classmethod
    def from_paths(cls, paths: Iterable[str]) -> "ManifestSet":
        """Load files and directories given on the command line.

        Files are keyed by their path as given (directory entries joined to
        the directory), so equal file names in different directories are
        all kept. A file named twice is loaded once.
        """
        files = {}
        for path in paths:
            if Path(path).is_dir():
                loaded = cls.from_dir(path)
                files.update((str(Path(path) / name), content) for name, content in loaded.files.items())
            else:
                files[str(Path(path))] = cls.from_file(path).files[Path(path).name]
        return cls(files=files)
