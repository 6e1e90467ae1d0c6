"""Rebuilding the overlay from a git repository and a mapping table.

Used after receiving a repository from a peer: the git objects arrive through
git itself, the mapping table arrives separately, and the overlay commit
records, branch refs and HEAD are derived from the two.

Per-commit and per-branch problems are logged, collected in the report and
skipped. A repository that cannot be opened, a mapping table that cannot be
read, and a detached HEAD with no mapping abort the whole run; since all
writes are staged in one transaction, an aborted run writes nothing.
"""

from pathlib import Path
from typing import List, Optional

import structlog

from mgit.core import hashing
from mgit.core.commit import build_record, overlay_parents
from mgit.core.config import load_config
from mgit.core.errors import MGitError, NotFoundError
from mgit.core.hashing import HashScheme
from mgit.core.mappings import MappingStore, MappingTable
from mgit.core.source import SourceCommit, SourceRepository
from mgit.core.storage import HEADS_PREFIX, ObjectStore
from mgit.models.mapping import MappingRecord
from mgit.models.report import ReconstructionReport

log = structlog.get_logger(__name__)


class ReconstructionEngine:
    """Replays git history into overlay commit records."""

    def __init__(self, store: ObjectStore, scheme: HashScheme = hashing.DEFAULT_SCHEME):
        self.store = store
        self.scheme = scheme

    def reconstruct(
        self, source: SourceRepository, table: MappingTable
    ) -> ReconstructionReport:
        report = ReconstructionReport()
        self.store.initialize()

        with self.store.transaction():
            self._rebuild_commits(source, table, report)
            self._rebuild_branches(source, table, report)
            self._rebuild_head(source, table, report)

        log.info(
            "reconstruction_finished",
            created=len(report.created),
            skipped=len(report.skipped),
            warnings=len(report.warnings),
        )
        return report

    def _warn(self, report: ReconstructionReport, event: str, message: str, **context) -> None:
        log.warning(event, **context)
        report.warnings.append(message)

    def _rebuild_commits(
        self, source: SourceRepository, table: MappingTable, report: ReconstructionReport
    ) -> None:
        staged = set()
        for mapping in table:
            overlay_hash = mapping.overlay_hash
            if overlay_hash in staged or self.store.has(overlay_hash):
                report.skipped.append(overlay_hash)
                continue

            try:
                commit = source.commit_by_hash(mapping.source_hash)
            except NotFoundError as e:
                self._warn(
                    report,
                    "source_commit_missing",
                    f"could not find git commit {mapping.source_hash}: {e}",
                    git_hash=mapping.source_hash,
                )
                continue

            for parent in commit.parent_hashes:
                if table.find_by_source(parent) is None:
                    report.warnings.append(
                        f"no overlay hash for parent {parent} of {commit.hexsha}; "
                        "using the git hash"
                    )
            parents = overlay_parents(commit, table)
            scheme = self._detect_scheme(commit, parents, mapping, report)

            record = build_record(commit, overlay_hash, parents, mapping.identity_key, scheme)
            try:
                self.store.put(record)
            except MGitError as e:
                self._warn(
                    report,
                    "overlay_commit_store_failed",
                    f"could not store overlay commit {overlay_hash}: {e}",
                    overlay_hash=overlay_hash,
                )
                continue

            staged.add(overlay_hash)
            report.created.append(overlay_hash)
            log.debug("overlay_commit_reconstructed", overlay_hash=overlay_hash)

    def _detect_scheme(
        self,
        commit: SourceCommit,
        parents: List[str],
        mapping: MappingRecord,
        report: ReconstructionReport,
    ) -> HashScheme:
        """Find the scheme that produced the peer's overlay hash.

        The configured scheme is tried first. When no scheme reproduces the
        hash, the record is tagged with the configured one and a warning is
        added; verification will then flag it.
        """
        candidates = [self.scheme] + [s for s in HashScheme if s is not self.scheme]
        for scheme in candidates:
            computed = hashing.compute(
                commit.tree_hash,
                parents,
                commit.author,
                commit.committer,
                mapping.identity_key,
                commit.message,
                scheme=scheme,
            )
            if computed == mapping.overlay_hash.lower():
                return scheme

        self._warn(
            report,
            "overlay_hash_unmatched",
            f"overlay hash {mapping.overlay_hash} of git commit {commit.hexsha} does not "
            f"match any hash scheme; tagging it {self.scheme.value}",
            overlay_hash=mapping.overlay_hash,
            git_hash=commit.hexsha,
        )
        return self.scheme

    def _rebuild_branches(
        self, source: SourceRepository, table: MappingTable, report: ReconstructionReport
    ) -> None:
        for branch in source.enumerate_branches():
            mapping = table.find_by_source(branch.tip_hash)
            if mapping is None:
                self._warn(
                    report,
                    "branch_mapping_missing",
                    f"could not find overlay hash for branch {branch.name} "
                    f"at git hash {branch.tip_hash}",
                    branch=branch.name,
                    git_hash=branch.tip_hash,
                )
                continue

            ref_name = self.store.update_ref(HEADS_PREFIX + branch.name, mapping.overlay_hash)
            report.refs[ref_name] = mapping.overlay_hash

    def _rebuild_head(
        self, source: SourceRepository, table: MappingTable, report: ReconstructionReport
    ) -> None:
        head = source.head_reference()
        if head.is_symbolic:
            state = self.store.set_head(HEADS_PREFIX + head.branch_name)
        else:
            mapping = table.find_by_source(head.commit_hash) if head.commit_hash else None
            if mapping is None:
                raise NotFoundError(
                    f"could not find overlay hash for detached HEAD at {head.commit_hash}"
                )
            state = self.store.set_head(mapping.overlay_hash, detached=True)
        report.head = state.render()


def reconstruct_worktree(
    project_root: Path, scheme: Optional[HashScheme] = None
) -> ReconstructionReport:
    """Reconstruct the overlay of the git working tree at ``project_root``.

    The mapping table is read from the overlay directory and must exist.
    """
    source = SourceRepository.open(project_root)
    store = ObjectStore.for_worktree(project_root)
    config = load_config(store.root)
    store.default_branch = config.default_branch
    table = MappingStore(store.root).load(required=True)

    engine = ReconstructionEngine(store, scheme or config.hash_scheme)
    return engine.reconstruct(source, table)
