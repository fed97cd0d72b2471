"""npm-git-lock: Lock installed node_modules contents to a git repository.

This package provides the command-line interface and the synchronization
protocol that tags each committed dependency tree with a fingerprint of the
manifest's dependency sets, so identical manifests reuse identical trees.
"""

__version__ = "3.3.5"

from . import (  # noqa: E402
    cli,
    config,
    constants,
    git_wrapper,
    manifest,
    native,
    npm,
    sync,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "git_wrapper",
    "manifest",
    "native",
    "npm",
    "sync",
]
