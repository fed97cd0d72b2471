import logging
import sys
from pathlib import Path

from .constants import (
    APP_NAME,
    IGNORE_FILE,
    MAX_COMMAND_LENGTH,
    NPM_EXECUTABLE,
    PLATFORM_ONLY_PACKAGES,
)
from .git_wrapper import GitRepo
from .npm import Npm

logger = logging.getLogger(APP_NAME)

REBUILD_OVERHEAD = len(f"{NPM_EXECUTABLE} rebuild")
"""int: Characters every `npm rebuild` invocation spends before package names."""


def list_installed_packages(modules_dir: Path) -> list[str]:
    """Lists top-level installed packages, expanding `@scope` directories.

    Args:
        modules_dir (Path): The `node_modules` directory.

    Returns:
        list[str]: Sorted package names (e.g. `['@babel/core', 'left-pad']`).
    """
    names = []
    for entry in modules_dir.iterdir():
        if entry.name.startswith(".") or not entry.is_dir():
            continue
        if entry.name.startswith("@"):
            names.extend(
                f"{entry.name}/{child.name}"
                for child in entry.iterdir()
                if child.is_dir() and not child.name.startswith(".")
            )
        else:
            names.append(entry.name)
    return sorted(names)


def filter_for_platform(
    packages: list[str],
    platform: str | None = None,
    platform_only: dict[str, str] | None = None,
) -> list[str]:
    """Drops packages that can only be built on a different platform.

    Args:
        packages (list[str]): Candidate package names.
        platform (str | None): Host platform; defaults to `sys.platform`.
        platform_only (dict[str, str] | None): Package name to required
            platform; defaults to `PLATFORM_ONLY_PACKAGES`.

    Returns:
        list[str]: The packages that may be rebuilt on this host.
    """
    platform = platform or sys.platform
    table = PLATFORM_ONLY_PACKAGES if platform_only is None else platform_only

    kept = []
    for name in packages:
        required = table.get(name)
        if required and required != platform:
            logger.info(f"Skipping rebuild of {name} (requires {required})")
            continue
        kept.append(name)
    return kept


def group_packages(
    packages: list[str],
    max_length: int = MAX_COMMAND_LENGTH,
    overhead: int = REBUILD_OVERHEAD,
) -> list[list[str]]:
    """Splits package names into batches that fit on one command line.

    Each name costs its length plus one separating space. Order is preserved.
    A name that cannot fit even on its own is placed alone in a group.

    Args:
        packages (list[str]): Package names, in rebuild order.
        max_length (int): The command-line length ceiling.
        overhead (int): Characters consumed before the first name.

    Returns:
        list[list[str]]: Consecutive, non-empty groups.
    """
    groups: list[list[str]] = []
    current: list[str] = []
    length = overhead

    for name in packages:
        cost = len(name) + 1
        if current and length + cost > max_length:
            groups.append(current)
            current, length = [], overhead
        if not current and overhead + cost > max_length:
            logger.warning(f"Package name '{name}' exceeds the command length limit")
        current.append(name)
        length += cost

    if current:
        groups.append(current)
    return groups


def update_ignore_file(repo: GitRepo) -> list[str]:
    """Adds untracked paths to the repository's ignore-file and stages it.

    The new content is the sorted, deduplicated union of the existing lines
    and every currently untracked path.

    Returns:
        list[str]: The patterns written.
    """
    ignore_path = repo.path / IGNORE_FILE
    existing = []
    if ignore_path.exists():
        existing = [
            line.strip() for line in ignore_path.read_text().splitlines() if line.strip()
        ]

    untracked = [p for p in repo.status().untracked if p != IGNORE_FILE]
    patterns = sorted(set(existing) | set(untracked))

    ignore_path.write_text("\n".join(patterns) + "\n" if patterns else "")
    logger.debug(f"Ignoring {len(untracked)} platform-specific file(s)")
    repo.add(IGNORE_FILE)
    return patterns


def rebuild_native(
    npm: Npm,
    repo: GitRepo,
    platform: str | None = None,
    platform_only: dict[str, str] | None = None,
    max_length: int = MAX_COMMAND_LENGTH,
) -> None:
    """Rebuilds native modules for this host and ignores the build outputs.

    Args:
        npm (Npm): Package manager bound to the project directory.
        repo (GitRepo): The dependency repository (`node_modules`).
        platform (str | None): Host platform override.
        platform_only (dict[str, str] | None): Platform restriction table.
        max_length (int): Command-line length ceiling.

    Raises:
        NpmError: If any rebuild batch fails.
    """
    packages = filter_for_platform(
        list_installed_packages(repo.path), platform, platform_only
    )
    overhead = len(f"{npm.executable} rebuild")
    groups = group_packages(packages, max_length, overhead)
    logger.info(f"Rebuilding {len(packages)} package(s) in {len(groups)} batch(es)")

    for group in groups:
        npm.rebuild(group)

    update_ignore_file(repo)
