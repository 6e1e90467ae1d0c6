"""Tests for walking overlay history."""

from mgit.core.commit import OverlayCommitter
from mgit.core.history import walk


def test_walk_from_tip(source, store, mapping_store, make_commit):
    committer = OverlayCommitter(source, store, mapping_store)
    hashes = [
        committer.record_commit(make_commit(f"commit {i}"), "idA").overlay_hash
        for i in range(4)
    ]

    walked = [r.overlay_hash for r in walk(store, hashes[-1])]

    assert walked == list(reversed(hashes))


def test_walk_limit(source, store, mapping_store, make_commit):
    committer = OverlayCommitter(source, store, mapping_store)
    tip = None
    for i in range(5):
        tip = committer.record_commit(make_commit(f"commit {i}"), "idA")

    assert len(list(walk(store, tip.overlay_hash, limit=2))) == 2


def test_walk_merge_visits_each_commit_once(repo, source, store, mapping_store, make_commit):
    committer = OverlayCommitter(source, store, mapping_store)
    base = committer.record_commit(make_commit("base"), "idA")
    side = committer.record_commit(make_commit("side"), "idA")
    repo.git.reset("--hard", base.source_hash)
    main = committer.record_commit(make_commit("main"), "idB")
    repo.git.merge(side.source_hash, "--no-ff", "-m", "merge")
    merge = committer.record_commit(repo.head.commit.hexsha, "idB")

    walked = [r.overlay_hash for r in walk(store, merge.overlay_hash)]

    assert walked == [
        merge.overlay_hash,
        main.overlay_hash,
        side.overlay_hash,
        base.overlay_hash,
    ]


def test_walk_skips_unreadable(source, store, mapping_store, make_commit):
    committer = OverlayCommitter(source, store, mapping_store)
    root = committer.record_commit(make_commit("root"), "idA")
    tip = committer.record_commit(make_commit("tip"), "idA")
    store.object_path(root.overlay_hash).unlink()

    walked = [r.overlay_hash for r in walk(store, [tip.overlay_hash, "0" * 40])]

    assert walked == [tip.overlay_hash]
