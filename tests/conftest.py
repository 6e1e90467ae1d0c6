"""Shared fixtures: temporary git repositories with deterministic commits."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from git import Actor, Repo

from mgit.core.mappings import MappingStore
from mgit.core.source import SourceRepository
from mgit.core.storage import ObjectStore

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def git_project():
    """Create an empty git repository whose HEAD is on branch ``main``."""
    with tempfile.TemporaryDirectory() as temp_dir:
        project_path = Path(temp_dir) / "project"
        project_path.mkdir()
        repo = Repo.init(project_path)

        # Configure git user for testing
        with repo.config_writer() as config:
            config.set_value("user", "name", "Test User")
            config.set_value("user", "email", "test@example.com")

        repo.git.symbolic_ref("HEAD", "refs/heads/main")
        yield project_path


@pytest.fixture
def repo(git_project):
    return Repo(git_project)


@pytest.fixture
def source(git_project):
    return SourceRepository.open(git_project)


@pytest.fixture
def make_commit(repo):
    """Return a helper that writes a file and commits it with a fixed date."""
    counter = {"n": 0}

    def _make_commit(message, filename=None, content=None, author="Alice", email="alice@example.com"):
        counter["n"] += 1
        filename = filename or f"file{counter['n']}.txt"
        path = Path(repo.working_tree_dir) / filename
        path.write_text(content if content is not None else f"{message}\n")
        repo.index.add([filename])

        when = BASE_TIME + timedelta(minutes=counter["n"])
        actor = Actor(author, email)
        commit = repo.index.commit(
            message,
            author=actor,
            committer=actor,
            author_date=when,
            commit_date=when,
        )
        return commit.hexsha

    return _make_commit


@pytest.fixture
def overlay_root():
    """A separate, empty directory to hold an overlay store."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir) / ".mgit"


@pytest.fixture
def store(overlay_root):
    object_store = ObjectStore(overlay_root)
    object_store.initialize()
    return object_store


@pytest.fixture
def mapping_store(overlay_root):
    return MappingStore(overlay_root)
