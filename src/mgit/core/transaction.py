"""Atomic file writes and staged multi-file updates."""

import os
import tempfile
from pathlib import Path
from typing import List, Tuple

import structlog

from mgit.core.errors import IOFailureError

log = structlog.get_logger(__name__)

# Flush order: objects before the refs naming them, refs before HEAD
OBJECT_STAGE = 0
REF_STAGE = 1
HEAD_STAGE = 2


def atomic_write(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file renamed into place."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise IOFailureError(f"failed to write {path}: {e}") from e


class Transaction:
    """Collects writes and applies them only when committed.

    Writes are applied in stage order (objects, then refs, then HEAD) and each
    file is replaced atomically, so an interrupted flush never leaves a ref
    pointing at an object that was not written.
    """

    def __init__(self):
        self._pending: List[Tuple[int, int, Path, str]] = []

    def stage(self, stage: int, path: Path, content: str) -> None:
        self._pending.append((stage, len(self._pending), Path(path), content))

    def __len__(self) -> int:
        return len(self._pending)

    def commit(self) -> None:
        for _, _, path, content in sorted(self._pending, key=lambda p: (p[0], p[1])):
            atomic_write(path, content)
        log.debug("transaction_committed", writes=len(self._pending))
        self._pending.clear()

    def rollback(self) -> None:
        if self._pending:
            log.debug("transaction_discarded", writes=len(self._pending))
        self._pending.clear()
