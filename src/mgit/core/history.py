"""Walking overlay history for log output."""

from collections import deque
from typing import Iterable, Iterator, Optional

import structlog

from mgit.core.errors import MGitError
from mgit.core.storage import ObjectStore
from mgit.models.commit import CommitRecord

log = structlog.get_logger(__name__)


def walk(
    store: ObjectStore, start: Iterable[str], limit: Optional[int] = None
) -> Iterator[CommitRecord]:
    """Yield overlay commits breadth-first from one or more start hashes.

    Parents are visited in order, so first-parent history comes first at each
    level. Commits that cannot be loaded are logged and skipped.
    """
    if isinstance(start, str):
        start = [start]

    visited = set()
    queue = deque(start)
    count = 0

    while queue and (limit is None or count < limit):
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)

        try:
            record = store.get(current)
        except MGitError as e:
            log.warning("history_commit_unreadable", overlay_hash=current, error=str(e))
            continue

        yield record
        count += 1

        queue.extend(p for p in record.parent_hashes if p not in visited)
