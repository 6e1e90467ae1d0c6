"""Tests for overlay graph verification."""

import json

import pytest

from mgit.core.commit import OverlayCommitter
from mgit.core.errors import IntegrityError
from mgit.core.hashing import HashScheme
from mgit.core.verify import Verifier, failed_hashes
from mgit.models.report import FailureKind


@pytest.fixture
def history(source, store, mapping_store, make_commit):
    committer = OverlayCommitter(source, store, mapping_store)
    root = committer.record_commit(make_commit("root"), "idA")
    child = committer.record_commit(make_commit("child"), "idA")
    grandchild = committer.record_commit(make_commit("grandchild"), "idB")
    return root, child, grandchild


@pytest.fixture
def verifier(store, source):
    return Verifier(store, source)


def _rewrite(store, overlay_hash, **changes):
    path = store.object_path(overlay_hash)
    data = json.loads(path.read_text())
    data.update(changes)
    path.write_text(json.dumps(data))


def test_valid_history(history, verifier):
    report = verifier.verify(history[-1].overlay_hash)

    assert report.valid
    assert report.checked == 3
    assert verifier.check(history[-1].overlay_hash).checked == 3


@pytest.mark.parametrize(
    "field, value",
    [
        ("message", "forged message\n"),
        ("tree_hash", "0" * 40),
    ],
)
def test_tampered_field_is_reported_for_that_commit_only(history, store, verifier, field, value):
    root, child, grandchild = history
    _rewrite(store, child.overlay_hash, **{field: value})

    report = verifier.verify(grandchild.overlay_hash)

    assert not report.valid
    assert failed_hashes(report) == [child.overlay_hash]
    assert report.checked == 3
    assert any(
        f.kind == FailureKind.FIELD_MISMATCH and f.detail.startswith(field)
        for f in report.failures_for(child.overlay_hash)
    )


def test_tampered_identity_key(history, store, verifier):
    root, child, grandchild = history
    record = json.loads(store.object_path(child.overlay_hash).read_text())
    record["author"]["pubkey"] = "idMallory"
    record["committer"]["pubkey"] = "idMallory"
    store.object_path(child.overlay_hash).write_text(json.dumps(record))

    report = verifier.verify(grandchild.overlay_hash)

    failures = report.failures_for(child.overlay_hash)
    assert [f.kind for f in failures] == [FailureKind.HASH_MISMATCH]
    assert failures[0].expected is not None
    assert failures[0].expected != child.overlay_hash
    assert failed_hashes(report) == [child.overlay_hash]


def test_tampered_parent_link(history, store, verifier):
    root, child, grandchild = history
    _rewrite(store, grandchild.overlay_hash, parent_hashes=[root.overlay_hash])

    report = verifier.verify(grandchild.overlay_hash)

    assert failed_hashes(report) == [grandchild.overlay_hash]
    # The walk follows the stored parent, so the child is never reached
    assert report.checked == 2


def test_missing_object(history, store, verifier):
    root, child, grandchild = history
    store.object_path(root.overlay_hash).unlink()

    report = verifier.verify(grandchild.overlay_hash)

    assert [f.kind for f in report.failures] == [FailureKind.MISSING_OBJECT]
    assert report.failures[0].overlay_hash == root.overlay_hash
    assert report.checked == 2


def test_corrupt_object(history, store, verifier):
    root, child, grandchild = history
    store.object_path(child.overlay_hash).write_text("not json")

    report = verifier.verify(grandchild.overlay_hash)

    assert report.failures_for(child.overlay_hash)[0].kind == FailureKind.CORRUPT_OBJECT
    # Parents of an unreadable record are unknown
    assert report.checked == 1


def test_missing_source_commit(history, store, verifier):
    root, child, grandchild = history
    _rewrite(store, child.overlay_hash, source_hash="f" * 40)

    report = verifier.verify(grandchild.overlay_hash)

    assert [f.kind for f in report.failures_for(child.overlay_hash)] == [FailureKind.MISSING_SOURCE]
    assert report.checked == 3


def test_legacy_records_verify(source, store, mapping_store, make_commit, verifier):
    committer = OverlayCommitter(source, store, mapping_store, scheme=HashScheme.LEGACY)
    committer.record_commit(make_commit("root"), "idA")
    tip = committer.record_commit(make_commit("child"), "idA")

    assert verifier.verify(tip.overlay_hash).valid


def test_check_raises(history, store, verifier):
    _rewrite(store, history[0].overlay_hash, message="forged\n")

    with pytest.raises(IntegrityError):
        verifier.check(history[-1].overlay_hash)
