import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    LOCAL_CONFIG_FILE,
    MANIFEST_FILE,
    MAX_COMMAND_LENGTH,
    MODULES_DIR,
    NPM_EXECUTABLE,
    PLATFORM_ONLY_PACKAGES,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


@dataclass
class CoreConfig:
    """Repository layout settings.

    Attributes:
        repo (str | None): Default URL of the dependency repository.
        branch (str): Mainline branch of the dependency repository.
        modules_dir (str): Installed dependency directory, relative to the project.
        manifest (str): Manifest file, relative to the project.
    """

    repo: str | None = None
    branch: str = DEFAULT_BRANCH
    modules_dir: str = MODULES_DIR
    manifest: str = MANIFEST_FILE


@dataclass
class NpmConfig:
    """Package manager settings.

    Attributes:
        executable (str): The npm binary to invoke.
        max_command_length (int): Ceiling for a single `npm rebuild` command line.
    """

    executable: str = NPM_EXECUTABLE
    max_command_length: int = MAX_COMMAND_LENGTH


@dataclass
class RebuildConfig:
    """Cross-platform rebuild settings.

    Attributes:
        platform_only (dict[str, str]): Package name to the only `sys.platform`
            it builds on. Merged over the built-in table.
    """

    platform_only: dict[str, str] = field(
        default_factory=lambda: dict(PLATFORM_ONLY_PACKAGES)
    )


@dataclass
class SyncConfig:
    """Default values for the command-line switches."""

    cross_platform: bool = False
    incremental_install: bool = False
    production: bool = False
    skip_install: bool = False


@dataclass
class LoggingConfig:
    """Log output settings.

    Attributes:
        file (str | None): Optional log file; rotated when it grows too large.
        max_log_size (int): Max bytes for the log file before rotation.
    """

    file: str | None = None
    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator."""

    core: CoreConfig = field(default_factory=CoreConfig)
    npm: NpmConfig = field(default_factory=NpmConfig)
    rebuild: RebuildConfig = field(default_factory=RebuildConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, project_dir: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            project_dir (Path | None): The project root to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        instance = cls()
        if CONFIG_FILE.exists():
            instance._merge_from_file(CONFIG_FILE)

        if project_dir:
            local_toml = project_dir / LOCAL_CONFIG_FILE
            if local_toml.exists():
                instance._merge_from_file(local_toml)

        return instance

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            unknown = set(data) - set(self.__dataclass_fields__)
            if unknown:
                logger.warning(
                    f"Unknown config sections in {path.name}: "
                    f"{', '.join(sorted(unknown))}. Ignoring."
                )

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
            if "npm" in data:
                self.npm = self._update_dataclass("npm", self.npm, data["npm"])
            if "sync" in data:
                self.sync = self._update_dataclass("sync", self.sync, data["sync"])
            if "logging" in data:
                self.logging = self._update_dataclass(
                    "logging", self.logging, data["logging"]
                )
            if "rebuild" in data:
                # Merge the table so user entries extend the built-in one.
                extra = data["rebuild"].pop("platform_only", {})
                self.rebuild = self._update_dataclass(
                    "rebuild", self.rebuild, data["rebuild"]
                )
                if extra:
                    self.rebuild.platform_only = {**self.rebuild.platform_only, **extra}

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable sizes."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
