"""Creating overlay commits for git commits."""

from typing import List, Optional

import structlog
from git import Actor

from mgit.core import hashing
from mgit.core.errors import MGitError
from mgit.core.hashing import HashScheme
from mgit.core.mappings import MappingStore, MappingTable
from mgit.core.source import SourceCommit, SourceRepository
from mgit.core.storage import ObjectStore
from mgit.models.commit import CommitRecord, Signature

log = structlog.get_logger(__name__)


def overlay_parents(commit: SourceCommit, table: MappingTable) -> List[str]:
    """Translate git parent hashes to overlay hashes, in parent order.

    A parent with no mapping is carried as its raw git hash.
    """
    parents = []
    for parent in commit.parent_hashes:
        record = table.find_by_source(parent)
        if record is not None:
            parents.append(record.overlay_hash)
        else:
            log.warning("parent_mapping_missing", commit=commit.hexsha, parent=parent)
            parents.append(parent)
    return parents


def build_record(
    commit: SourceCommit,
    overlay_hash: str,
    parent_hashes: List[str],
    identity_key: str,
    scheme: HashScheme,
) -> CommitRecord:
    """Assemble the overlay record for a git commit."""
    pubkey = identity_key or None
    return CommitRecord(
        overlay_hash=overlay_hash,
        source_hash=commit.hexsha,
        tree_hash=commit.tree_hash,
        parent_hashes=parent_hashes,
        author=commit.author.model_copy(update={"pubkey": pubkey}),
        committer=commit.committer.model_copy(update={"pubkey": pubkey}),
        message=commit.message,
        metadata={"version": scheme.schema_version},
    )


class OverlayCommitter:
    """Assigns overlay hashes to git commits and records them."""

    def __init__(
        self,
        source: SourceRepository,
        store: ObjectStore,
        mappings: MappingStore,
        scheme: HashScheme = hashing.DEFAULT_SCHEME,
    ):
        self.source = source
        self.store = store
        self.mappings = mappings
        self.scheme = scheme

    def record_commit(self, source_hash: str, identity_key: str) -> CommitRecord:
        """Store an overlay record for an existing git commit.

        The mapping is appended and the overlay ref of git's current branch is
        advanced when git's HEAD is on a branch.
        """
        self.store.initialize()
        commit = self.source.commit_by_hash(source_hash)
        table = self.mappings.load()

        parents = overlay_parents(commit, table)
        overlay_hash = hashing.compute(
            commit.tree_hash,
            parents,
            commit.author,
            commit.committer,
            identity_key,
            commit.message,
            scheme=self.scheme,
        )

        record = build_record(commit, overlay_hash, parents, identity_key, self.scheme)
        self.store.put(record)
        self.mappings.append(commit.hexsha, overlay_hash, identity_key)

        head = self.source.head_reference()
        if head.is_symbolic and head.commit_hash == commit.hexsha:
            try:
                self.store.update_ref(head.branch_name, overlay_hash)
            except MGitError as e:
                log.warning("branch_ref_update_failed", branch=head.branch_name, error=str(e))

        log.info("overlay_commit_created", overlay_hash=overlay_hash, git_hash=commit.hexsha)
        return record

    def create_commit(
        self,
        message: str,
        author: Signature,
        identity_key: str,
        committer: Optional[Signature] = None,
    ) -> str:
        """Commit git's index and record the overlay commit for it.

        Returns the overlay hash, or the git hash when no identity key is set
        and therefore no overlay commit is made.
        """
        repo = self.source.repo
        committer = committer or author
        git_commit = repo.index.commit(
            message,
            author=Actor(author.name, author.email),
            committer=Actor(committer.name, committer.email),
            author_date=author.when,
            commit_date=committer.when,
        )

        if not identity_key:
            log.info("overlay_commit_skipped", git_hash=git_commit.hexsha, reason="no identity key")
            return git_commit.hexsha

        return self.record_commit(git_commit.hexsha, identity_key).overlay_hash
