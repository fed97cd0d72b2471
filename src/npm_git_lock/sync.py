"""The synchronization protocol between `node_modules` and its git repository.

A run computes the manifest fingerprint once, classifies the dependency
repository against it, and then either does nothing (HEAD already carries the
fingerprint tag), checks out an existing fingerprint tag, or installs from
scratch and publishes the result under a new tag.
"""

import enum
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from . import native
from .config import Config
from .constants import APP_NAME
from .git_wrapper import GitError, GitRepo
from .manifest import Manifest, compute_fingerprint
from .npm import Npm, NpmError

logger = logging.getLogger(APP_NAME)


class RepositoryState(enum.Enum):
    """How the dependency repository relates to the target fingerprint."""

    ABSENT = "absent"
    PRESENT_MATCHING_TAG = "present-matching-tag"
    PRESENT_DIVERGENT = "present-divergent"


class ReuseResult(enum.Enum):
    """Outcome of trying to check out an existing fingerprint tag."""

    SUCCESS = "success"
    FALLTHROUGH = "fallthrough"


@dataclass
class SyncOptions:
    """Per-run switches.

    Attributes:
        repo_url (str): URL of the dependency repository.
        verbose (bool): Emit debug-level progress.
        cross_platform (bool): Defer native builds to a platform-filtered
            rebuild and keep their outputs out of the repository.
        incremental_install (bool): Install on top of the previous tree instead
            of starting from an empty directory.
        production (bool): Install runtime dependencies only.
        skip_install (bool): Do not run `npm install`.
    """

    repo_url: str
    verbose: bool = False
    cross_platform: bool = False
    incremental_install: bool = False
    production: bool = False
    skip_install: bool = False


def clear_directory(path: Path, keep: tuple[str, ...] = (".git",)) -> None:
    """Deletes every entry of `path` except the names in `keep`."""
    for entry in path.iterdir():
        if entry.name in keep:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()


class Synchronizer:
    """Drives one synchronization run for a project directory.

    Attributes:
        project_dir (Path): Directory holding the manifest.
        manifest (Manifest): The parsed manifest.
        fingerprint (str): Tag name for the manifest's dependency set.
        options (SyncOptions): Run switches.
        config (Config): Loaded configuration.
        npm (Npm): Package manager bound to `project_dir`.
        repo (GitRepo | None): The dependency repository, set by `probe`.
    """

    def __init__(
        self,
        project_dir: Path,
        manifest: Manifest,
        options: SyncOptions,
        config: Config | None = None,
        npm: Npm | None = None,
    ):
        self.project_dir = project_dir
        self.manifest = manifest
        self.options = options
        self.config = config or Config()
        self.npm = npm or Npm(project_dir, self.config.npm.executable)
        self.fingerprint = compute_fingerprint(manifest)
        self.repo: GitRepo | None = None

    @property
    def modules_dir(self) -> Path:
        return self.project_dir / self.config.core.modules_dir

    @property
    def branch(self) -> str:
        return self.config.core.branch

    def _open_existing(self) -> GitRepo | None:
        """Returns the dependency repository if it is registered with our URL."""
        if not (self.modules_dir / ".git").exists():
            logger.debug(f"{self.modules_dir} is not a git repository")
            return None
        repo = GitRepo(self.modules_dir)
        try:
            registered = repo.has_remote_url(self.options.repo_url)
        except GitError:
            logger.debug(f"Could not list remotes in {self.modules_dir}")
            return None
        if not registered:
            logger.info(f"{self.options.repo_url} is not a remote of {self.modules_dir}")
            return None
        return repo

    def probe(self) -> RepositoryState:
        """Classifies the dependency directory and prepares it for the run.

        An absent or foreign directory is replaced by a fresh clone. A present
        repository whose HEAD lacks the fingerprint tag has its tags refreshed.

        Raises:
            GitError: If cloning, tag listing or fetching fails.
        """
        repo = self._open_existing()
        if repo is not None:
            self.repo = repo
            if self.fingerprint in repo.tags_at_head():
                return RepositoryState.PRESENT_MATCHING_TAG
            logger.info("Fetching tags from remote")
            repo.fetch_tags(self.options.repo_url)
            return RepositoryState.PRESENT_DIVERGENT

        if self.modules_dir.exists():
            logger.info(f"Removing {self.modules_dir}")
            shutil.rmtree(self.modules_dir)
        logger.info(f"Cloning {self.options.repo_url} into {self.modules_dir}")
        self.repo = GitRepo.clone(self.options.repo_url, self.modules_dir)
        return RepositoryState.ABSENT

    def _run_lifecycle(self, name: str) -> None:
        if self.manifest.has_script(name):
            self.npm.run_script(name)

    def _rebuild_native(self) -> None:
        native.rebuild_native(
            self.npm,
            self.repo,
            platform_only=self.config.rebuild.platform_only,
            max_length=self.config.npm.max_command_length,
        )

    def try_reuse(self) -> ReuseResult:
        """Checks out the fingerprint tag if the repository has it.

        Any failure here falls through to a fresh install; reuse only saves
        time, it is never required for a correct tree.
        """
        repo = self.repo
        if not repo.has_revision(self.fingerprint):
            logger.info(f"Tag {self.fingerprint} not found, installing from scratch")
            return ReuseResult.FALLTHROUGH

        try:
            self._run_lifecycle("preinstall")
            logger.info(f"Checking out tag {self.fingerprint}")
            repo.checkout(self.fingerprint)
            repo.clean()
            if self.options.cross_platform:
                self._rebuild_native()
            self._run_lifecycle("postinstall")
        except (GitError, NpmError, OSError) as e:
            logger.warning(f"Could not reuse tag {self.fingerprint} ({e}), reinstalling")
            return ReuseResult.FALLTHROUGH

        return ReuseResult.SUCCESS

    def _prepare_mainline(self) -> None:
        repo = self.repo
        if repo.rev_parse("HEAD") is None:
            # Fresh clone of an empty repository.
            repo.set_head_branch(self.branch)
            return
        repo.stash()
        repo.checkout(self.branch)
        repo.pull(self.options.repo_url, self.branch)

    def commit_message(self, npm_version: str) -> str:
        return (
            f"Committing {self.config.core.modules_dir} from "
            f"{self.config.core.manifest} version {self.manifest.version} "
            f"and npm version {npm_version}"
        )

    def install_and_publish(self) -> None:
        """Installs dependencies, commits the tree, tags it and pushes.

        Raises:
            GitError: If any git step fails.
            NpmError: If install, a lifecycle script or a rebuild fails.
        """
        repo = self.repo
        opts = self.options

        self._prepare_mainline()

        if not opts.incremental_install:
            logger.info(f"Clearing {self.modules_dir}")
            clear_directory(self.modules_dir)

        if opts.cross_platform:
            self._run_lifecycle("preinstall")

        if not opts.skip_install:
            self.npm.install(
                ignore_scripts=opts.cross_platform, production=opts.production
            )

        if opts.cross_platform:
            self._run_lifecycle("postinstall")

        repo.add_all()

        if opts.cross_platform:
            self._rebuild_native()

        npm_version = self.npm.version()
        if repo.status().has_changes:
            logger.info("Committing installed dependencies")
            repo.commit(self.commit_message(npm_version))
        else:
            logger.info("No changes to commit")

        if not repo.tag(self.fingerprint):
            logger.debug(f"Tag {self.fingerprint} already present")

        logger.info(f"Pushing {self.branch} and tags to {opts.repo_url}")
        repo.push(opts.repo_url, self.branch)

    def run(self) -> RepositoryState:
        """Executes the full decision procedure once.

        Returns:
            RepositoryState: The classification that drove the run.
        """
        logger.debug(f"Dependency fingerprint: {self.fingerprint}")
        state = self.probe()

        if state is RepositoryState.PRESENT_MATCHING_TAG:
            logger.info(f"{self.modules_dir.name} is already at {self.fingerprint}")
            return state

        if self.try_reuse() is ReuseResult.SUCCESS:
            logger.info(f"Reused tag {self.fingerprint}")
            return state

        self.install_and_publish()
        return state


def synchronize(
    project_dir: Path, options: SyncOptions, config: Config | None = None
) -> RepositoryState:
    """Loads the manifest from `project_dir` and runs one synchronization.

    Raises:
        FileNotFoundError: If the manifest is missing.
        ManifestError: If the manifest cannot be parsed.
        GitError: On unrecovered git failures.
        NpmError: On unrecovered npm failures.
    """
    config = config or Config()
    manifest = Manifest.load(project_dir / config.core.manifest)
    return Synchronizer(project_dir, manifest, options, config).run()
