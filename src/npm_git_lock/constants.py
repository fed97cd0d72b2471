import os
from pathlib import Path

"""Global constants and default paths for npm-git-lock.

This module defines the project layout the tool expects (manifest and
dependency directory names), the application identifiers, and the defaults
used when building and rebuilding the installed dependency tree.
"""

# --- Identity ---
APP_NAME = "npm-git-lock"
"""str: The human-readable application name."""

# --- Project Layout ---
MANIFEST_FILE = "package.json"
"""str: The dependency manifest, relative to the project directory."""

MODULES_DIR = "node_modules"
"""str: The installed dependency tree kept in the secondary repository."""

IGNORE_FILE = ".gitignore"
"""str: The ignore-file maintained inside the dependency repository."""

DEFAULT_BRANCH = "master"
"""str: The mainline branch commits are pushed to."""

LOCAL_CONFIG_FILE = "npm-git-lock.toml"
"""str: Project-local configuration file name."""

# --- Configuration Paths ---
_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
CONFIG_DIR: Path = (
    Path(_XDG_CONFIG) if _XDG_CONFIG else Path.home() / ".config"
) / "npm-git-lock"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The global configuration file path."""

# --- npm / Rebuild Constants ---
NPM_EXECUTABLE = "npm"
"""str: The package manager binary invoked for install/rebuild/run."""

MAX_COMMAND_LENGTH = 8191
"""int: Command-line length ceiling (cmd.exe limit) for bulk rebuild calls."""

PLATFORM_ONLY_PACKAGES = {
    "fsevents": "darwin",
}
"""
dict[str, str]: Native modules that only build on one platform,
keyed by package name, valued by `sys.platform`.
"""
