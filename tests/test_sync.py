"""Tests for the synchronization state machine."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from npm_git_lock.config import Config
from npm_git_lock.git_wrapper import ChangeSet, GitError, GitRepo, GitStatus
from npm_git_lock.manifest import Manifest
from npm_git_lock.npm import Npm, NpmError
from npm_git_lock.sync import (
    RepositoryState,
    ReuseResult,
    Synchronizer,
    SyncOptions,
    clear_directory,
    synchronize,
)

URL = "git@host:team/deps.git"
LEFT_PAD_FINGERPRINT = "RUeuDa8m6QLDcQx5k5CBGMOpL7s="


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "package.json").write_text(
        json.dumps({"version": "1.0.0", "dependencies": {"left-pad": "^1.0.0"}})
    )
    return tmp_path


@pytest.fixture
def npm() -> MagicMock:
    mock_npm = MagicMock(spec=Npm)
    mock_npm.version.return_value = "10.2.4"
    return mock_npm


def _make_repo(path: Path, head: str | None = "abc123") -> MagicMock:
    repo = MagicMock(spec=GitRepo)
    repo.path = path
    repo.has_remote_url.return_value = True
    repo.tags_at_head.return_value = []
    repo.has_revision.return_value = False
    repo.rev_parse.return_value = head
    repo.status.return_value = GitStatus(index=ChangeSet(added=["left-pad/index.js"]))
    repo.tag.return_value = True
    return repo


def _existing_modules(project: Path) -> Path:
    modules = project / "node_modules"
    (modules / ".git").mkdir(parents=True)
    return modules


def _sync(
    project: Path, npm: MagicMock, manifest: Manifest | None = None, **opts: bool
) -> Synchronizer:
    manifest = manifest or Manifest.load(project / "package.json")
    return Synchronizer(project, manifest, SyncOptions(URL, **opts), Config(), npm=npm)


def test_end_to_end_from_absent_repository(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    """Empty state: clone, no tag to reuse, install, commit, tag, push."""
    modules = project / "node_modules"
    repo = _make_repo(modules, head=None)

    def fake_clone(url: str, dest: Path) -> MagicMock:
        (dest / ".git").mkdir(parents=True)
        return repo

    mock_cls = mocker.patch("npm_git_lock.sync.GitRepo")
    mock_cls.clone.side_effect = fake_clone

    state = _sync(project, npm).run()

    assert state is RepositoryState.ABSENT
    mock_cls.clone.assert_called_once_with(URL, modules)
    repo.set_head_branch.assert_called_once_with("master")
    npm.install.assert_called_once_with(ignore_scripts=False, production=False)

    message = repo.commit.call_args.args[0]
    assert "1.0.0" in message
    assert "10.2.4" in message
    repo.tag.assert_called_once_with(LEFT_PAD_FINGERPRINT)
    repo.push.assert_called_once_with(URL, "master")

    order = [name for name, *_ in repo.method_calls]
    assert order.index("add_all") < order.index("commit") < order.index("tag")
    assert order.index("tag") < order.index("push")


def test_tag_is_reused_right_after_clone(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    """A fresh clone carries the remote's tags, so a known fingerprint skips install."""
    modules = project / "node_modules"
    repo = _make_repo(modules)
    repo.has_revision.return_value = True

    def fake_clone(url: str, dest: Path) -> MagicMock:
        (dest / ".git").mkdir(parents=True)
        return repo

    mock_cls = mocker.patch("npm_git_lock.sync.GitRepo")
    mock_cls.clone.side_effect = fake_clone

    state = _sync(project, npm).run()

    assert state is RepositoryState.ABSENT
    mock_cls.clone.assert_called_once_with(URL, modules)
    repo.has_revision.assert_called_with(LEFT_PAD_FINGERPRINT)
    repo.checkout.assert_called_once_with(LEFT_PAD_FINGERPRINT)
    repo.clean.assert_called_once_with()
    npm.install.assert_not_called()
    repo.commit.assert_not_called()
    repo.tag.assert_not_called()
    repo.push.assert_not_called()

def test_foreign_directory_is_replaced_by_clone(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = project / "node_modules"
    modules.mkdir()
    (modules / "stale.js").write_text("")
    repo = _make_repo(modules)

    def fake_clone(url: str, dest: Path) -> MagicMock:
        assert not dest.exists()
        (dest / ".git").mkdir(parents=True)
        return repo

    mocker.patch("npm_git_lock.sync.GitRepo").clone.side_effect = fake_clone

    assert _sync(project, npm).probe() is RepositoryState.ABSENT
    assert not (modules / "stale.js").exists()


def test_repository_with_other_remote_is_recloned(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    old = _make_repo(modules)
    old.has_remote_url.return_value = False
    new = _make_repo(modules)

    mock_cls = mocker.patch("npm_git_lock.sync.GitRepo", return_value=old)
    mock_cls.clone.return_value = new

    sync = _sync(project, npm)
    assert sync.probe() is RepositoryState.ABSENT
    assert sync.repo is new
    old.tags_at_head.assert_not_called()


def test_unreadable_repository_is_treated_as_absent(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    broken = _make_repo(modules)
    broken.has_remote_url.side_effect = GitError(["remote", "-v"], 128, "corrupt")
    mock_cls = mocker.patch("npm_git_lock.sync.GitRepo", return_value=broken)
    mock_cls.clone.return_value = _make_repo(modules)

    assert _sync(project, npm).probe() is RepositoryState.ABSENT
    mock_cls.clone.assert_called_once_with(URL, modules)


def test_second_run_is_a_no_op(project: Path, npm: MagicMock, mocker: MagicMock) -> None:
    """HEAD already carries the fingerprint: nothing mutating is issued."""
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.tags_at_head.return_value = ["older-tag", LEFT_PAD_FINGERPRINT]
    mock_cls = mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)

    state = _sync(project, npm).run()

    assert state is RepositoryState.PRESENT_MATCHING_TAG
    assert [name for name, *_ in repo.method_calls] == [
        "has_remote_url",
        "tags_at_head",
    ]
    assert npm.method_calls == []
    mock_cls.clone.assert_not_called()


def test_existing_tag_is_reused_without_install(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.has_revision.return_value = True
    mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)

    events: list[str] = []
    npm.run_script.side_effect = lambda name: events.append(f"run {name}")
    repo.checkout.side_effect = lambda ref: events.append(f"checkout {ref}")
    repo.clean.side_effect = lambda: events.append("clean")

    manifest = Manifest.from_dict(
        {
            "dependencies": {"left-pad": "^1.0.0"},
            "scripts": {"preinstall": "node a.js", "postinstall": "node b.js"},
        }
    )
    state = _sync(project, npm, manifest).run()

    assert state is RepositoryState.PRESENT_DIVERGENT
    repo.fetch_tags.assert_called_once_with(URL)
    assert events == [
        "run preinstall",
        f"checkout {LEFT_PAD_FINGERPRINT}",
        "clean",
        "run postinstall",
    ]
    npm.install.assert_not_called()
    repo.commit.assert_not_called()
    repo.push.assert_not_called()


def test_reuse_in_cross_platform_mode_rebuilds(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.has_revision.return_value = True
    mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)
    rebuild = mocker.patch("npm_git_lock.sync.native.rebuild_native")

    sync = _sync(project, npm, cross_platform=True)
    sync.repo = repo

    assert sync.try_reuse() is ReuseResult.SUCCESS
    rebuild.assert_called_once()
    assert rebuild.call_args.args[:2] == (npm, repo)


def test_missing_tag_falls_through_to_install(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)

    _sync(project, npm).run()

    repo.has_revision.assert_called_once_with(LEFT_PAD_FINGERPRINT)
    checkouts = [c.args[0] for c in repo.checkout.call_args_list]
    assert checkouts == ["master"]
    repo.stash.assert_called_once()
    repo.pull.assert_called_once_with(URL, "master")
    npm.install.assert_called_once()


def test_network_failure_during_reuse_falls_through(
    project: Path,
    npm: MagicMock,
    mocker: MagicMock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """A flaky checkout is logged and recovered by a full install."""
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.has_revision.return_value = True
    repo.checkout.side_effect = [
        GitError(["checkout", LEFT_PAD_FINGERPRINT], 128, "Could not resolve host"),
        None,
    ]
    mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)

    _sync(project, npm).run()

    assert "Could not reuse tag" in caplog.text
    npm.install.assert_called_once()
    repo.push.assert_called_once_with(URL, "master")


def test_failed_lifecycle_script_during_reuse_falls_through(
    project: Path, npm: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.has_revision.return_value = True
    npm.run_script.side_effect = NpmError("run", 1, "boom")

    manifest = Manifest.from_dict({"scripts": {"preinstall": "exit 1"}})
    sync = _sync(project, npm, manifest)
    sync.repo = repo

    assert sync.try_reuse() is ReuseResult.FALLTHROUGH
    repo.checkout.assert_not_called()


def test_unchanged_tree_is_tagged_but_not_committed(
    project: Path, npm: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.status.return_value = GitStatus(untracked=["leftover.log"])
    repo.tag.return_value = False  # tag already present

    sync = _sync(project, npm)
    sync.repo = repo
    sync.install_and_publish()

    repo.commit.assert_not_called()
    repo.tag.assert_called_once_with(LEFT_PAD_FINGERPRINT)
    repo.push.assert_called_once_with(URL, "master")


def test_install_clears_directory_but_keeps_git(project: Path, npm: MagicMock) -> None:
    modules = _existing_modules(project)
    (modules / "left-pad").mkdir()
    (modules / "left-pad" / "index.js").write_text("")
    (modules / ".gitignore").write_text("x\n")

    sync = _sync(project, npm)
    sync.repo = _make_repo(modules)
    sync.install_and_publish()

    assert sorted(p.name for p in modules.iterdir()) == [".git"]


def test_incremental_install_keeps_previous_tree(project: Path, npm: MagicMock) -> None:
    modules = _existing_modules(project)
    (modules / "left-pad").mkdir()

    sync = _sync(project, npm, incremental_install=True)
    sync.repo = _make_repo(modules)
    sync.install_and_publish()

    assert (modules / "left-pad").exists()


def test_skip_install_and_production_flags(project: Path, npm: MagicMock) -> None:
    modules = _existing_modules(project)

    sync = _sync(project, npm, skip_install=True)
    sync.repo = _make_repo(modules)
    sync.install_and_publish()
    npm.install.assert_not_called()

    sync = _sync(project, npm, production=True)
    sync.repo = _make_repo(modules)
    sync.install_and_publish()
    npm.install.assert_called_once_with(ignore_scripts=False, production=True)


def test_cross_platform_install_sequence(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    """Scripts are deferred, rebuild runs after staging and before commit."""
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    events: list[str] = []
    npm.install.side_effect = lambda **kw: events.append("install")
    npm.run_script.side_effect = lambda name: events.append(f"run {name}")
    repo.add_all.side_effect = lambda: events.append("add_all")
    repo.commit.side_effect = lambda msg: events.append("commit")
    mocker.patch(
        "npm_git_lock.sync.native.rebuild_native",
        side_effect=lambda *a, **kw: events.append("rebuild"),
    )

    manifest = Manifest.from_dict(
        {
            "dependencies": {"left-pad": "^1.0.0"},
            "scripts": {"preinstall": "a", "postinstall": "b"},
        }
    )
    sync = _sync(project, npm, manifest, cross_platform=True)
    sync.repo = repo
    sync.install_and_publish()

    npm.install.assert_called_once_with(ignore_scripts=True, production=False)
    assert events == [
        "run preinstall",
        "install",
        "run postinstall",
        "add_all",
        "rebuild",
        "commit",
    ]


def test_rebuild_failure_aborts_publish(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    mocker.patch(
        "npm_git_lock.sync.native.rebuild_native",
        side_effect=NpmError("rebuild", 1, "gyp ERR!"),
    )

    sync = _sync(project, npm, cross_platform=True)
    sync.repo = repo
    with pytest.raises(NpmError):
        sync.install_and_publish()

    repo.commit.assert_not_called()
    repo.tag.assert_not_called()
    repo.push.assert_not_called()


def test_git_failure_while_publishing_is_fatal(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.pull.side_effect = GitError(["pull", URL, "master"], 1, "conflict")
    mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)

    with pytest.raises(GitError):
        _sync(project, npm).run()

    npm.install.assert_not_called()


def test_probe_fetch_failure_is_fatal(
    project: Path, npm: MagicMock, mocker: MagicMock
) -> None:
    modules = _existing_modules(project)
    repo = _make_repo(modules)
    repo.fetch_tags.side_effect = GitError(["fetch", "-t", URL], 128, "offline")
    mocker.patch("npm_git_lock.sync.GitRepo", return_value=repo)

    with pytest.raises(GitError):
        _sync(project, npm).probe()


def test_synchronize_requires_manifest(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        synchronize(tmp_path, SyncOptions(URL))


def test_clear_directory(tmp_path: Path) -> None:
    (tmp_path / ".git").mkdir()
    (tmp_path / "pkg" / "lib").mkdir(parents=True)
    (tmp_path / "file.txt").write_text("")

    clear_directory(tmp_path)

    assert [p.name for p in tmp_path.iterdir()] == [".git"]
