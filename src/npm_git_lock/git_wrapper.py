import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class GitError(RuntimeError):
    """A git command that was expected to succeed returned a non-zero status.

    Attributes:
        args_list (list[str]): The git arguments (without the leading `git`).
        returncode (int): The process exit status.
        output (str): The captured stderr (or stdout if stderr was empty).
    """

    def __init__(self, args: list[str], returncode: int, output: str):
        self.args_list = args
        self.returncode = returncode
        self.output = output
        super().__init__(
            f"Git error: 'git {' '.join(args)}' exited with {returncode}: {output}"
        )


@dataclass(frozen=True)
class GitResult:
    """The outcome of a git command whose failure is an expected branch signal."""

    args: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class ChangeSet:
    """Paths grouped by the kind of change git reports for them."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    renamed: list[str] = field(default_factory=list)
    copied: list[str] = field(default_factory=list)

    def record(self, code: str, path: str) -> None:
        bucket = {
            "A": self.added,
            "M": self.modified,
            "T": self.modified,
            "D": self.deleted,
            "R": self.renamed,
            "C": self.copied,
        }.get(code)
        if bucket is not None:
            bucket.append(path)

    def __bool__(self) -> bool:
        return bool(
            self.added or self.modified or self.deleted or self.renamed or self.copied
        )


@dataclass
class GitStatus:
    """Parsed output of `git status --porcelain -z --untracked-files=all`.

    Attributes:
        index (ChangeSet): Changes staged in the index.
        working_tree (ChangeSet): Unstaged changes in the working tree.
        untracked (list[str]): Files git does not track and does not ignore.
    """

    index: ChangeSet = field(default_factory=ChangeSet)
    working_tree: ChangeSet = field(default_factory=ChangeSet)
    untracked: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        """True if a commit of tracked content would record anything."""
        return bool(self.index) or bool(self.working_tree)

    @classmethod
    def parse(cls, output: str) -> "GitStatus":
        """Parses NUL-separated porcelain v1 output.

        Each entry is `XY <path>`; renames and copies are followed by an extra
        entry holding the original path, which is skipped.

        Args:
            output (str): Raw stdout of the status command.

        Returns:
            GitStatus: The classified change sets.
        """
        status = cls()
        entries = output.split("\0")
        i = 0
        while i < len(entries):
            entry = entries[i]
            i += 1
            if len(entry) < 4:
                continue
            x, y, path = entry[0], entry[1], entry[3:]
            if x == "?" and y == "?":
                status.untracked.append(path)
                continue
            if x in "RC":
                i += 1  # original path
            status.index.record(x, path)
            status.working_tree.record(y, path)
        return status


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Every command runs with the repository root as its working directory, so
    nothing here depends on (or changes) the process-wide current directory.

    Attributes:
        path (Path): The file system path to the repository root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def clone(cls, url: str, dest: Path) -> "GitRepo":
        """Clones `url` into `dest` and returns a wrapper for the new checkout.

        Args:
            url (str): The remote repository URL.
            dest (Path): The destination directory (must not exist).

        Raises:
            GitError: If the clone fails.
        """
        args = ["clone", url, str(dest)]
        logger.debug(f"git {' '.join(args)}")
        res = subprocess.run(
            ["git", *args],
            cwd=dest.parent,
            capture_output=True,
            text=True,
        )
        if res.returncode != 0:
            output = res.stderr.strip() or res.stdout.strip()
            logger.error(f"'git {' '.join(args)}' failed: {output}")
            raise GitError(args, res.returncode, output)
        return cls(dest)

    def _exec(self, args: list[str]) -> GitResult:
        """Executes a git command and reports the outcome without raising.

        Args:
            args (list[str]): A list of arguments to pass to the git command.

        Returns:
            GitResult: Exit status and raw (unstripped) output streams.
        """
        logger.debug(f"git {' '.join(args)}")
        res = subprocess.run(
            ["git", *args],
            cwd=self.path,
            capture_output=True,
            text=True,
        )
        return GitResult(args, res.returncode, res.stdout, res.stderr)

    def _run(self, args: list[str]) -> str:
        """Executes a git command that is expected to succeed.

        Args:
            args (list[str]): A list of arguments to pass to the git command.

        Returns:
            str: The stripped stdout of the command.

        Raises:
            GitError: If the git command returns a non-zero exit code.
        """
        result = self._exec(args)
        if not result.ok:
            output = result.stderr.strip() or result.stdout.strip()
            logger.error(f"'git {' '.join(args)}' failed: {output}")
            raise GitError(args, result.returncode, output)
        return result.stdout.strip()

    def remotes(self) -> list[tuple[str, str]]:
        """Lists registered remotes as (name, url) pairs from `git remote -v`."""
        output = self._run(["remote", "-v"])
        pairs = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 2 and (parts[0], parts[1]) not in pairs:
                pairs.append((parts[0], parts[1]))
        return pairs

    def has_remote_url(self, url: str) -> bool:
        """Checks whether any registered remote points at `url`."""
        return any(remote_url == url for _, remote_url in self.remotes())

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'master').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        result = self._exec(["rev-parse", "--verify", "-q", rev])
        if not result.ok:
            logger.debug(f"rev-parse failed for '{rev}'")
            return None
        return result.stdout.strip()

    def tags_at_head(self) -> list[str]:
        """Lists the tags pointing at the checked-out commit.

        Returns:
            list[str]: Tag names; empty when HEAD is unborn.
        """
        if self.rev_parse("HEAD") is None:
            return []
        output = self._run(["tag", "-l", "--points-at", "HEAD"])
        return output.splitlines() if output else []

    def fetch_tags(self, url: str) -> None:
        """Fetches all tags from `url`."""
        self._run(["fetch", "-t", url])

    def has_revision(self, rev: str) -> bool:
        """Checks whether `rev` exists in the repository's object history."""
        return self._exec(["rev-list", "-n", "1", rev]).ok

    def checkout(self, ref: str) -> None:
        """Checks out a branch, tag or commit."""
        self._run(["checkout", ref])

    def clean(self) -> None:
        """Removes untracked files and directories from the working tree."""
        self._run(["clean", "-df"])

    def stash(self) -> None:
        """Stashes uncommitted and untracked changes."""
        self._run(["stash", "--include-untracked"])

    def pull(self, url: str, branch: str) -> None:
        """Pulls `branch` from `url` into the current branch."""
        self._run(["pull", url, branch])

    def set_head_branch(self, branch: str) -> None:
        """Points HEAD at `branch` without touching the working tree.

        Used on a fresh clone of an empty remote, where HEAD is unborn and
        `checkout` has nothing to switch to.
        """
        self._run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"])

    def status(self) -> GitStatus:
        """Returns the parsed porcelain status, including every untracked file."""
        result = self._exec(["status", "--porcelain", "-z", "--untracked-files=all"])
        if not result.ok:
            output = result.stderr.strip()
            logger.error(f"'git status' failed: {output}")
            raise GitError(result.args, result.returncode, output)
        return GitStatus.parse(result.stdout)

    def add_all(self) -> None:
        """
        Stages all changes (modified, deleted, and untracked files)
        in the working directory.
        """
        self._run(["add", "."])

    def add(self, path: str) -> None:
        """Stages a single path."""
        self._run(["add", path])

    def commit(self, message: str) -> None:
        """Commits all tracked changes (`commit -a`) with the provided message."""
        self._run(["commit", "-a", "-m", message])

    def tag(self, name: str) -> bool:
        """Creates a lightweight tag at HEAD.

        An existing tag of the same name is an expected outcome, not an error.

        Returns:
            bool: True if the tag was created, False if it already existed.

        Raises:
            GitError: For any other tagging failure.
        """
        result = self._exec(["tag", name])
        if result.ok:
            return True
        if "already exists" in result.stderr:
            logger.debug(f"Tag '{name}' already exists")
            return False
        output = result.stderr.strip()
        logger.error(f"'git tag {name}' failed: {output}")
        raise GitError(result.args, result.returncode, output)

    def push(self, url: str, branch: str) -> None:
        """Pushes `branch` and all tags to `url`."""
        self._run(["push", url, branch, "--tags"])
