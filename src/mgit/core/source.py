"""Read access to the underlying git repository through GitPython."""

from pathlib import Path
from typing import List, Optional

import git
from git import Repo
from pydantic import BaseModel

from mgit.core.errors import IOFailureError, NotFoundError
from mgit.core.hashing import is_hex
from mgit.models.commit import Signature


class SourceCommit(BaseModel):
    """The parts of a git commit the overlay is derived from."""

    hexsha: str
    tree_hash: str
    parent_hashes: List[str]
    author: Signature
    committer: Signature
    message: str


class SourceHead(BaseModel):
    """Where git's HEAD points."""

    is_symbolic: bool
    branch_name: Optional[str] = None
    commit_hash: Optional[str] = None  # None on an unborn branch


class SourceBranch(BaseModel):
    name: str
    tip_hash: str


def _signature(actor: git.Actor, when) -> Signature:
    return Signature(name=actor.name or "", email=actor.email or "", when=when)


class SourceRepository:
    """Narrow view of a git repository used by reconstruction and verification."""

    def __init__(self, repo: Repo):
        self.repo = repo

    @classmethod
    def open(cls, path: Path) -> "SourceRepository":
        """Open the git repository at ``path``."""
        try:
            return cls(Repo(Path(path)))
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise IOFailureError(f"error opening git repository at {path}: {e}") from e

    @property
    def working_dir(self) -> Path:
        return Path(self.repo.working_tree_dir or self.repo.git_dir)

    def commit_by_hash(self, hexsha: str) -> SourceCommit:
        """Load a commit by its full (or unambiguous abbreviated) hash."""
        if not is_hex(hexsha):
            raise NotFoundError(f"git commit not found: {hexsha}")
        try:
            commit = self.repo.commit(hexsha)
        except (git.exc.BadName, git.exc.BadObject, ValueError) as e:
            raise NotFoundError(f"git commit not found: {hexsha}") from e

        if commit.type != "commit":
            raise NotFoundError(f"{hexsha} is a {commit.type}, not a commit")

        return SourceCommit(
            hexsha=commit.hexsha,
            tree_hash=commit.tree.hexsha,
            parent_hashes=[p.hexsha for p in commit.parents],
            author=_signature(commit.author, commit.authored_datetime),
            committer=_signature(commit.committer, commit.committed_datetime),
            message=commit.message,
        )

    def head_reference(self) -> SourceHead:
        head = self.repo.head
        try:
            commit_hash = head.commit.hexsha
        except ValueError:
            commit_hash = None

        if head.is_detached:
            return SourceHead(is_symbolic=False, commit_hash=commit_hash)
        return SourceHead(
            is_symbolic=True, branch_name=head.ref.name, commit_hash=commit_hash
        )

    def enumerate_branches(self) -> List[SourceBranch]:
        return [
            SourceBranch(name=branch.name, tip_hash=branch.commit.hexsha)
            for branch in self.repo.branches
        ]
