"""Content-addressed storage for overlay commits, references and HEAD."""

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

import structlog
from pydantic import ValidationError

from mgit.core.abbrev import MIN_PREFIX_LENGTH, AbbreviationResolver
from mgit.core.errors import (
    InvalidHashError,
    InvalidRecordError,
    IOFailureError,
    NotFoundError,
)
from mgit.core.hashing import HASH_HEX_LENGTH, is_full_hash, is_hex
from mgit.core.transaction import (
    HEAD_STAGE,
    OBJECT_STAGE,
    REF_STAGE,
    Transaction,
    atomic_write,
)
from mgit.models.commit import CommitRecord
from mgit.models.report import HeadState

log = structlog.get_logger(__name__)

MGIT_DIR_NAME = ".mgit"
DEFAULT_BRANCH = "master"
HEADS_PREFIX = "refs/heads/"
TAGS_PREFIX = "refs/tags/"
SYMBOLIC_PREFIX = "ref: "


def normalize_ref(name: str) -> str:
    """Qualify a bare branch name as ``refs/heads/<name>``."""
    name = name.strip()
    if not name:
        raise InvalidRecordError("reference name cannot be empty")
    if not name.startswith("refs/"):
        name = HEADS_PREFIX + name
    if ".." in name.split("/") or name.endswith("/"):
        raise InvalidRecordError(f"invalid reference name: {name}")
    return name


class ObjectStore:
    """Manages the on-disk overlay layout rooted at an ``.mgit`` directory.

    Layout::

        objects/<2 hex>/<remaining hex>   one JSON file per commit record
        refs/heads/<name>, refs/tags/<name>   raw overlay hash
        HEAD                              "ref: <ref name>" or a raw hash
        mappings/hash_mappings.json       mapping table
    """

    def __init__(self, root: Path, default_branch: str = DEFAULT_BRANCH):
        self.root = Path(root)
        self.objects_dir = self.root / "objects"
        self.refs_dir = self.root / "refs"
        self.mappings_dir = self.root / "mappings"
        self.head_file = self.root / "HEAD"
        self.default_branch = default_branch
        self.resolver = AbbreviationResolver(self.objects_dir)
        self._txn: Optional[Transaction] = None

    @classmethod
    def for_worktree(cls, project_root: Path, **kwargs) -> "ObjectStore":
        return cls(Path(project_root) / MGIT_DIR_NAME, **kwargs)

    def exists(self) -> bool:
        """Check if the overlay layout has been initialized."""
        return self.objects_dir.is_dir() and self.head_file.exists()

    def initialize(self) -> None:
        """Create the directory layout and a default HEAD. Safe to repeat."""
        dirs = [
            self.objects_dir,
            self.refs_dir / "heads",
            self.refs_dir / "tags",
            self.mappings_dir,
        ]
        try:
            for directory in dirs:
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFailureError(f"failed to create overlay directory: {e}") from e

        if not self.head_file.exists():
            atomic_write(self.head_file, f"{SYMBOLIC_PREFIX}{HEADS_PREFIX}{self.default_branch}")
            log.debug("head_initialized", branch=self.default_branch)

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Stage every write made inside the block and apply them on exit.

        If the block raises, staged writes are discarded and the store is left
        as it was. Nested use joins the outer transaction.
        """
        if self._txn is not None:
            yield self._txn
            return

        txn = Transaction()
        self._txn = txn
        try:
            yield txn
        except BaseException:
            txn.rollback()
            raise
        else:
            txn.commit()
        finally:
            self._txn = None

    def _write(self, stage: int, path: Path, content: str) -> None:
        if self._txn is not None:
            self._txn.stage(stage, path, content)
        else:
            atomic_write(path, content)

    # Objects

    def object_path(self, overlay_hash: str) -> Path:
        return self.objects_dir / overlay_hash[:2] / overlay_hash[2:]

    def put(self, record: CommitRecord) -> Path:
        """Store a commit record under its overlay hash."""
        overlay_hash = record.overlay_hash
        if not overlay_hash:
            raise InvalidRecordError("overlay hash cannot be empty")
        if len(overlay_hash) < MIN_PREFIX_LENGTH or not is_hex(overlay_hash):
            raise InvalidRecordError(f"invalid overlay hash: {overlay_hash!r}")

        path = self.object_path(overlay_hash.lower())
        self._write(OBJECT_STAGE, path, encode_record(record))
        return path

    def has(self, overlay_hash: str) -> bool:
        if len(overlay_hash) < MIN_PREFIX_LENGTH or not is_hex(overlay_hash):
            return False
        return self.object_path(overlay_hash.lower()).is_file()

    def get(self, hash_or_prefix: str) -> CommitRecord:
        """Load a commit record by full hash or unique prefix."""
        value = hash_or_prefix.strip().lower()
        if len(value) < MIN_PREFIX_LENGTH:
            raise InvalidHashError(
                f"hash {value!r} too short, need at least {MIN_PREFIX_LENGTH} characters"
            )
        if not is_hex(value):
            raise InvalidHashError(f"not a hex hash: {value!r}")

        if len(value) < HASH_HEX_LENGTH:
            value = self.resolver.resolve(value)

        path = self.object_path(value)
        if not path.is_file():
            raise NotFoundError(f"commit object not found: {value}")

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise IOFailureError(f"failed to read commit object {value}: {e}") from e
        return decode_record(text, value)

    # References

    def update_ref(self, name: str, overlay_hash: str) -> str:
        """Point a branch or tag at an overlay hash; returns the full ref name."""
        ref_name = normalize_ref(name)
        self._write(REF_STAGE, self.root / ref_name, overlay_hash)
        return ref_name

    def get_ref(self, name: str) -> str:
        ref_name = normalize_ref(name)
        path = self.root / ref_name
        if not path.is_file():
            raise NotFoundError(f"reference not found: {ref_name}")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise IOFailureError(f"failed to read ref {ref_name}: {e}") from e

    def has_ref(self, name: str) -> bool:
        try:
            return (self.root / normalize_ref(name)).is_file()
        except InvalidRecordError:
            return False

    def list_refs(self, prefix: str = "refs/") -> Dict[str, str]:
        """Map every ref name under ``prefix`` to the hash it holds."""
        refs: Dict[str, str] = {}
        if not self.refs_dir.is_dir():
            return refs
        for path in sorted(self.refs_dir.rglob("*")):
            if not path.is_file() or path.name.startswith("."):
                continue
            ref_name = path.relative_to(self.root).as_posix()
            if ref_name.startswith(prefix):
                refs[ref_name] = path.read_text(encoding="utf-8").strip()
        return refs

    # HEAD

    def set_head(self, ref_or_hash: str, detached: bool = False) -> HeadState:
        """Point HEAD at a ref (symbolic) or directly at a hash (detached)."""
        value = ref_or_hash.strip()
        if detached or (is_full_hash(value) and not value.startswith("refs/")):
            state = HeadState(symbolic=False, target=value.lower())
        else:
            state = HeadState(symbolic=True, target=normalize_ref(value))
        self._write(HEAD_STAGE, self.head_file, state.render())
        return state

    def head_state(self) -> HeadState:
        if not self.head_file.is_file():
            raise NotFoundError("HEAD not found")
        try:
            content = self.head_file.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise IOFailureError(f"failed to read HEAD: {e}") from e

        if content.startswith(SYMBOLIC_PREFIX):
            return HeadState(symbolic=True, target=content[len(SYMBOLIC_PREFIX):].strip())
        return HeadState(symbolic=False, target=content)

    def get_head(self) -> str:
        """Return the ref name HEAD points to, or the hash when detached."""
        return self.head_state().target

    def head_hash(self) -> str:
        state = self.head_state()
        if state.symbolic:
            return self.get_ref(state.target)
        return state.target

    def get_head_commit(self) -> CommitRecord:
        return self.get(self.head_hash())

    def current_branch(self) -> Optional[str]:
        """Short branch name when HEAD is symbolic on a branch."""
        try:
            state = self.head_state()
        except NotFoundError:
            return None
        if state.symbolic and state.target.startswith(HEADS_PREFIX):
            return state.target[len(HEADS_PREFIX):]
        return None

    # Revisions

    def resolve_revision(self, rev: str, mappings=None) -> str:
        """Resolve HEAD, a ref name, an overlay hash or prefix, or a source hash.

        ``mappings`` is an optional :class:`~mgit.core.mappings.MappingTable`
        consulted for git hashes once the overlay store has no match.
        """
        rev = rev.strip()
        if rev == "HEAD":
            return self.head_hash()

        candidates = [rev] if rev.startswith("refs/") else [HEADS_PREFIX + rev, TAGS_PREFIX + rev]
        for ref_name in candidates:
            if self.has_ref(ref_name):
                return self.get_ref(ref_name)

        if is_hex(rev) and len(rev) >= MIN_PREFIX_LENGTH:
            value = rev.lower()
            if len(value) >= HASH_HEX_LENGTH:
                if self.has(value):
                    return value
            else:
                try:
                    return self.resolver.resolve(value)
                except NotFoundError:
                    pass

            if mappings is not None:
                record = mappings.find_by_source_prefix(value)
                if record is not None:
                    return record.overlay_hash

        raise NotFoundError(f"revision not found: {rev}")


def encode_record(record: CommitRecord) -> str:
    data = record.model_dump(mode="json", exclude_none=True)
    if not data.get("metadata"):
        data.pop("metadata", None)
    return json.dumps(data, indent=2)


def decode_record(text: str, overlay_hash: str = "") -> CommitRecord:
    try:
        return CommitRecord.model_validate_json(text)
    except ValidationError as e:
        raise InvalidRecordError(f"corrupt commit object {overlay_hash}: {e}") from e
