"""Verification of the overlay commit graph against the git repository."""

from collections import deque
from typing import Dict, List, Optional

import structlog

from mgit.core import hashing
from mgit.core.errors import IntegrityError, InvalidRecordError, MGitError, NotFoundError
from mgit.core.hashing import HashScheme
from mgit.core.source import SourceCommit, SourceRepository
from mgit.core.storage import ObjectStore
from mgit.models.commit import CommitRecord, Signature
from mgit.models.report import FailureKind, VerificationFailure, VerificationReport

log = structlog.get_logger(__name__)


class Verifier:
    """Walks the overlay graph from a start hash and rechecks every commit.

    For each reachable record the git commit it names is loaded, the overlay
    hash is recomputed from the git data plus the record's own parent hashes
    and identity key, and the stored fields are compared with the git commit.
    Nothing is written and no single failure stops the walk.
    """

    def __init__(
        self,
        store: ObjectStore,
        source: SourceRepository,
        default_scheme: HashScheme = hashing.DEFAULT_SCHEME,
    ):
        self.store = store
        self.source = source
        self.default_scheme = default_scheme

    def verify(self, start_hash: str) -> VerificationReport:
        report = VerificationReport(start=start_hash)
        visited = set()
        queue = deque([start_hash])

        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)

            record = self._load(current, report)
            if record is None:
                continue
            report.checked += 1

            self._check(current, record, report)

            for parent in record.parent_hashes:
                if parent not in visited:
                    queue.append(parent)

        if report.valid:
            log.info("verification_passed", start=start_hash, checked=report.checked)
        else:
            log.warning(
                "verification_failed",
                start=start_hash,
                checked=report.checked,
                failures=len(report.failures),
            )
        return report

    def check(self, start_hash: str) -> VerificationReport:
        """Like :meth:`verify`, but raise :class:`IntegrityError` on failure."""
        report = self.verify(start_hash)
        if not report.valid:
            raise IntegrityError(
                f"overlay verification failed for {len(report.failures)} problem(s) "
                f"reachable from {start_hash}"
            )
        return report

    def _load(self, overlay_hash: str, report: VerificationReport) -> Optional[CommitRecord]:
        try:
            return self.store.get(overlay_hash)
        except InvalidRecordError as e:
            kind = FailureKind.CORRUPT_OBJECT
            detail = str(e)
        except MGitError as e:
            kind = FailureKind.MISSING_OBJECT
            detail = str(e)

        report.failures.append(
            VerificationFailure(overlay_hash=overlay_hash, kind=kind, detail=detail)
        )
        return None

    def _check(self, key: str, record: CommitRecord, report: VerificationReport) -> None:
        def fail(kind: FailureKind, detail: str, expected: Optional[str] = None) -> None:
            report.failures.append(
                VerificationFailure(
                    overlay_hash=key, kind=kind, detail=detail, expected=expected
                )
            )

        try:
            commit = self.source.commit_by_hash(record.source_hash)
        except NotFoundError as e:
            fail(FailureKind.MISSING_SOURCE, f"cannot find git commit {record.source_hash}: {e}")
            return

        scheme = HashScheme.for_version(record.schema_version, self.default_scheme)
        expected = hashing.compute(
            commit.tree_hash,
            record.parent_hashes,
            commit.author,
            commit.committer,
            record.identity_key,
            commit.message,
            scheme=scheme,
        )
        if expected != key.lower():
            fail(
                FailureKind.HASH_MISMATCH,
                f"recomputed overlay hash differs ({scheme.value} scheme)",
                expected=expected,
            )

        for field, detail in field_mismatches(key, record, commit).items():
            fail(FailureKind.FIELD_MISMATCH, f"{field}: {detail}")


def _signature_mismatches(role: str, stored: Signature, actual: Signature) -> Dict[str, str]:
    problems = {}
    if stored.name != actual.name:
        problems[f"{role}.name"] = f"stored {stored.name!r}, git has {actual.name!r}"
    if stored.email != actual.email:
        problems[f"{role}.email"] = f"stored {stored.email!r}, git has {actual.email!r}"
    if stored.unix_time != actual.unix_time:
        problems[f"{role}.when"] = f"stored {stored.unix_time}, git has {actual.unix_time}"
    return problems


def field_mismatches(key: str, record: CommitRecord, commit: SourceCommit) -> Dict[str, str]:
    """Compare a stored record with the git commit it was derived from."""
    problems: Dict[str, str] = {}
    if record.overlay_hash.lower() != key.lower():
        problems["overlay_hash"] = f"record says {record.overlay_hash}, stored under {key}"
    if record.tree_hash != commit.tree_hash:
        problems["tree_hash"] = f"stored {record.tree_hash}, git has {commit.tree_hash}"
    if record.message != commit.message:
        problems["message"] = "stored message differs from git commit message"
    problems.update(_signature_mismatches("author", record.author, commit.author))
    problems.update(_signature_mismatches("committer", record.committer, commit.committer))
    if (record.committer.pubkey or "") != record.identity_key:
        problems["committer.pubkey"] = "committer identity key differs from author identity key"
    return problems


def failed_hashes(report: VerificationReport) -> List[str]:
    """Overlay hashes named by failures, in report order without repeats."""
    seen: Dict[str, None] = {}
    for failure in report.failures:
        seen.setdefault(failure.overlay_hash, None)
    return list(seen)
