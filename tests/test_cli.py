"""Tests for the mgit command line interface."""

import json
import logging

import httpx
import pytest
import structlog
from click.testing import CliRunner

from mgit.cli.main import main
from mgit.core import clone, remote
from mgit.core.commit import OverlayCommitter
from mgit.core.mappings import MappingStore
from mgit.core.storage import ObjectStore


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mgit(runner, git_project):
    """Run mgit against the test project."""

    def _run(*args):
        return runner.invoke(main, ["-C", str(git_project), *args], catch_exceptions=False)

    return _run


@pytest.fixture
def configured(mgit):
    assert mgit("init").exit_code == 0
    mgit("config", "user.name", "Alice")
    mgit("config", "user.email", "alice@example.com")
    mgit("config", "user.pubkey", "npub1alice")
    return mgit


def _stage(git_project, repo, name, content):
    (git_project / name).write_text(content)
    repo.index.add([name])


def test_init(mgit, git_project):
    result = mgit("init")

    assert result.exit_code == 0
    assert "Initialized mgit" in result.output
    store = ObjectStore.for_worktree(git_project)
    assert store.exists()
    # Overlay HEAD follows the branch git is on
    assert store.head_file.read_text() == "ref: refs/heads/main"
    assert (git_project / ".mgit" / "config.json").exists()
    assert ".mgit/" in (git_project / ".git" / "info" / "exclude").read_text().splitlines()

    again = mgit("init")
    assert again.exit_code == 0
    assert "already initialized" in again.output
    assert (git_project / ".git" / "info" / "exclude").read_text().count(".mgit/") == 1


def test_init_options(mgit, git_project):
    result = mgit("init", "--default-branch", "main", "--hash-scheme", "legacy")

    assert result.exit_code == 0
    assert (git_project / ".mgit" / "HEAD").read_text() == "ref: refs/heads/main"
    assert mgit("config", "hash_scheme").output.strip() == "legacy"


def test_init_outside_git_repository(runner, overlay_root):
    overlay_root.mkdir(parents=True)

    result = runner.invoke(main, ["-C", str(overlay_root), "init"])

    assert result.exit_code != 0


def test_config_get_and_set(configured):
    assert configured("config", "user.pubkey").output.strip() == "npub1alice"

    result = configured("config", "no.such.key", "x")
    assert result.exit_code != 0


def test_commit_creates_overlay_commit(configured, git_project, repo):
    _stage(git_project, repo, "README.md", "# Project\n")

    result = configured("commit", "-m", "Add readme")

    assert result.exit_code == 0
    store = ObjectStore.for_worktree(git_project)
    record = store.get(store.get_ref("main"))
    assert record.source_hash == repo.head.commit.hexsha
    assert record.identity_key == "npub1alice"
    assert record.author.name == "Alice"
    assert MappingStore(store.root).lookup_overlay(record.source_hash) == record.overlay_hash


def test_commit_requires_user(mgit, git_project, repo):
    mgit("init")
    _stage(git_project, repo, "README.md", "# Project\n")

    result = mgit("commit", "-m", "Add readme")

    assert result.exit_code != 0


def test_record_existing_commit(configured, make_commit, git_project):
    git_hash = make_commit("made with plain git")

    result = configured("record", "--pubkey", "npub1bob")

    assert result.exit_code == 0
    mappings = MappingStore(git_project / ".mgit")
    assert mappings.lookup_identity(git_hash) == "npub1bob"


def test_record_unknown_revision(configured, make_commit):
    make_commit("root")

    result = configured("record", "nonexistent-branch")

    assert result.exit_code != 0


def test_log_and_show(configured, git_project, repo):
    _stage(git_project, repo, "a.txt", "a\n")
    configured("commit", "-m", "First change")
    _stage(git_project, repo, "b.txt", "b\n")
    configured("commit", "-m", "Second change")

    oneline = configured("log", "--oneline")
    assert oneline.exit_code == 0
    lines = oneline.output.strip().splitlines()
    assert len(lines) == 2
    assert "Second change" in lines[0]
    assert "HEAD -> main" in lines[0]
    assert "First change" in lines[1]

    full = configured("log", "-n", "1")
    assert "Second change" in full.output
    assert "First change" not in full.output

    show = configured("show", "HEAD", "--no-patch")
    assert show.exit_code == 0
    assert "Second change" in show.output
    assert "npub1alice" in show.output


def test_rev_parse(configured, git_project, repo):
    _stage(git_project, repo, "a.txt", "a\n")
    configured("commit", "-m", "First change")
    store = ObjectStore.for_worktree(git_project)
    overlay_hash = store.get_ref("main")

    assert configured("rev-parse", "HEAD").output.strip() == overlay_hash
    assert configured("rev-parse", overlay_hash[:8]).output.strip() == overlay_hash
    git_hash = repo.head.commit.hexsha
    assert configured("rev-parse", git_hash[:10]).output.strip() == overlay_hash


def test_verify(configured, git_project, repo):
    _stage(git_project, repo, "a.txt", "a\n")
    configured("commit", "-m", "First change")
    _stage(git_project, repo, "b.txt", "b\n")
    configured("commit", "-m", "Second change")

    result = configured("verify")
    assert result.exit_code == 0
    assert "verification successful" in result.output

    store = ObjectStore.for_worktree(git_project)
    path = store.object_path(store.get_ref("main"))
    data = json.loads(path.read_text())
    data["message"] = "tampered\n"
    path.write_text(json.dumps(data))

    result = configured("verify")
    assert result.exit_code == 1
    assert "verification failed for 1 commit" in result.output


def test_reconstruct(configured, git_project, repo):
    _stage(git_project, repo, "a.txt", "a\n")
    configured("commit", "-m", "First change")
    store = ObjectStore.for_worktree(git_project)
    overlay_hash = store.get_ref("main")

    # Drop everything except the mapping table
    store.object_path(overlay_hash).unlink()
    (store.root / "refs" / "heads" / "main").unlink()

    result = configured("reconstruct")

    assert result.exit_code == 0
    assert "Reconstructed 1 overlay commits" in result.output
    assert store.get_ref("main") == overlay_hash
    assert store.get(overlay_hash).identity_key == "npub1alice"


def test_reconstruct_without_mappings(configured):
    result = configured("reconstruct")

    assert result.exit_code != 0


def test_fetch_mappings(configured, git_project, make_commit, monkeypatch):
    git_hash = make_commit("from peer")
    peer_hash = "ab" * 20
    body = json.dumps([{"git_hash": git_hash, "mgit_hash": peer_hash, "pubkey": "npub1peer"}])
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, text=body)

    real_fetch = remote.fetch_and_store

    def fake_fetch_and_store(url, token, store, client=None, timeout=remote.DEFAULT_TIMEOUT):
        return real_fetch(
            url, token, store, client=httpx.Client(transport=httpx.MockTransport(handler))
        )

    monkeypatch.setattr("mgit.cli.main.fetch_and_store", fake_fetch_and_store)

    result = configured(
        "fetch-mappings", "http://peer/api/mgit/repos/proj", "--token", "tok", "--no-reconstruct"
    )

    assert result.exit_code == 0
    assert "Fetched 1 mappings" in result.output
    assert requests[0].headers["Authorization"] == "Bearer tok"
    assert MappingStore(git_project / ".mgit").lookup_overlay(git_hash) == peer_hash


def test_fetch_mappings_requires_token(configured):
    result = configured("fetch-mappings", "http://peer/api/mgit/repos/proj")

    assert result.exit_code != 0


def test_clone(runner, repo, source, store, mapping_store, make_commit, overlay_root, monkeypatch):
    tip = OverlayCommitter(source, store, mapping_store).record_commit(make_commit("root"), "idA")
    workdir = overlay_root.parent
    bare_path = workdir / "origin.git"
    repo.clone(str(bare_path), bare=True)
    body = mapping_store.load().to_json()

    def handler(request):
        return httpx.Response(200, text=body)

    real_clone = clone.clone_repository

    def fake_clone_repository(url, destination, token, **kwargs):
        kwargs["git_url"] = str(bare_path)
        kwargs["client"] = httpx.Client(transport=httpx.MockTransport(handler))
        return real_clone(url, destination, token, **kwargs)

    monkeypatch.setattr("mgit.cli.main.clone_repository", fake_clone_repository)

    result = runner.invoke(
        main,
        ["-C", str(workdir), "clone", "http://peer/api/mgit/repos/shared.git", "--token", "tok"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert "Reconstructed 1 overlay commits" in result.output
    destination = workdir / "shared"
    assert ObjectStore.for_worktree(destination).get_ref("main") == tip.overlay_hash
    assert ".mgit/" in (destination / ".git" / "info" / "exclude").read_text().splitlines()


def test_clone_requires_token(runner, overlay_root):
    result = runner.invoke(main, ["-C", str(overlay_root.parent), "clone", "http://peer/repo"])

    assert result.exit_code != 0


def test_log_json_flag(mgit):
    result = mgit("--log-json", "init")

    assert result.exit_code == 0
