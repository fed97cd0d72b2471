"""Manifest loading and dependency fingerprinting.

The fingerprint of a manifest is the name of the tag that holds its installed
dependency tree in the secondary repository. It covers the dependency and
devDependency mappings only, so bumping the package version or editing a
script never invalidates a committed tree.
"""

import base64
import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class ManifestError(ValueError):
    """Raised when the manifest exists but cannot be interpreted."""


@dataclass(frozen=True)
class Manifest:
    """The parts of `package.json` the synchronizer reads.

    Attributes:
        dependencies (dict | None): Runtime dependencies, None when undeclared.
        dev_dependencies (dict | None): Development dependencies, None when
            undeclared.
        version (str | None): The package's declared version.
        scripts (dict[str, str]): Named lifecycle scripts.
    """

    dependencies: dict[str, str] | None = None
    dev_dependencies: dict[str, str] | None = None
    version: str | None = None
    scripts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        """Builds a manifest from decoded `package.json` content.

        Raises:
            ManifestError: If the top level or a known section has the wrong shape.
        """
        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a JSON object")

        for key in ("dependencies", "devDependencies", "scripts"):
            if key in data and data[key] is not None and not isinstance(data[key], dict):
                raise ManifestError(f"'{key}' must be an object")

        return cls(
            dependencies=data.get("dependencies"),
            dev_dependencies=data.get("devDependencies"),
            version=data.get("version"),
            scripts=dict(data.get("scripts") or {}),
        )

    @classmethod
    def load(cls, path: Path) -> "Manifest":
        """Reads and parses a manifest file.

        Args:
            path (Path): Path to `package.json`.

        Raises:
            FileNotFoundError: If the file does not exist.
            ManifestError: If the file is not valid JSON.
        """
        with open(path, encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ManifestError(f"Invalid JSON in {path}: {e}") from e
        return cls.from_dict(data)

    def has_script(self, name: str) -> bool:
        return bool(self.scripts.get(name))


def canonical_dependencies(manifest: Manifest) -> str:
    """Serializes the dependency pair with sorted keys and no whitespace."""
    return json.dumps(
        [manifest.dependencies, manifest.dev_dependencies],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_fingerprint(manifest: Manifest) -> str:
    """Derives the tag name for a manifest's dependency set.

    SHA-1 over the canonical serialization, base64 encoded, with `/` (illegal
    in a ref component) replaced by `_`.

    Args:
        manifest (Manifest): The parsed manifest.

    Returns:
        str: A ref-safe fingerprint.
    """
    digest = hashlib.sha1(canonical_dependencies(manifest).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii").replace("/", "_")
