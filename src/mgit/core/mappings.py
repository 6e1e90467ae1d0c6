"""Mapping table correlating git commit hashes with overlay hashes."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from mgit.core.errors import AmbiguousHashError, InvalidRecordError, IOFailureError, NotFoundError
from mgit.core.transaction import atomic_write
from mgit.models.mapping import MappingRecord

log = structlog.get_logger(__name__)

MAPPINGS_FILE = Path("mappings") / "hash_mappings.json"
LEGACY_MAPPINGS_FILE = Path("nostr_mappings.json")

_RECORD_LIST = TypeAdapter(List[MappingRecord])


class MappingIndex(ABC):
    """Lookup strategy over an ordered list of mapping records.

    Implementations must return the first record, in table order, that
    matches.
    """

    @abstractmethod
    def rebuild(self, records: List[MappingRecord]) -> None:
        """Called whenever the underlying records change."""

    @abstractmethod
    def by_source(self, source_hash: str) -> Optional[MappingRecord]:
        pass

    @abstractmethod
    def by_overlay(self, overlay_hash: str) -> Optional[MappingRecord]:
        pass

    def by_either(self, hash_value: str) -> Optional[MappingRecord]:
        return self.by_source(hash_value) or self.by_overlay(hash_value)


class ScanIndex(MappingIndex):
    """Linear scan; no extra memory, fine for small tables."""

    def __init__(self):
        self._records: List[MappingRecord] = []

    def rebuild(self, records: List[MappingRecord]) -> None:
        self._records = records

    def by_source(self, source_hash: str) -> Optional[MappingRecord]:
        return next((r for r in self._records if r.source_hash == source_hash), None)

    def by_overlay(self, overlay_hash: str) -> Optional[MappingRecord]:
        return next((r for r in self._records if r.overlay_hash == overlay_hash), None)

    def by_either(self, hash_value: str) -> Optional[MappingRecord]:
        return next((r for r in self._records if r.matches(hash_value)), None)


class DictIndex(MappingIndex):
    """Hash-map index for large tables."""

    def __init__(self):
        self._records: List[MappingRecord] = []
        self._sources: Dict[str, MappingRecord] = {}
        self._overlays: Dict[str, MappingRecord] = {}
        self._order: Dict[int, int] = {}

    def rebuild(self, records: List[MappingRecord]) -> None:
        self._records = records
        self._sources = {}
        self._overlays = {}
        self._order = {id(r): i for i, r in enumerate(records)}
        for record in records:
            self._sources.setdefault(record.source_hash, record)
            self._overlays.setdefault(record.overlay_hash, record)

    def by_source(self, source_hash: str) -> Optional[MappingRecord]:
        return self._sources.get(source_hash)

    def by_overlay(self, overlay_hash: str) -> Optional[MappingRecord]:
        return self._overlays.get(overlay_hash)

    def by_either(self, hash_value: str) -> Optional[MappingRecord]:
        # Table order decides when the value is a source hash of one record
        # and the overlay hash of another
        candidates = [
            r for r in (self._sources.get(hash_value), self._overlays.get(hash_value)) if r
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda r: self._order[id(r)])


class MappingTable:
    """Ordered mapping records with replace-on-duplicate appends."""

    def __init__(
        self,
        records: Optional[Iterable[MappingRecord]] = None,
        index_factory: Callable[[], MappingIndex] = ScanIndex,
    ):
        self._records: List[MappingRecord] = list(records or [])
        self._index = index_factory()
        self._index.rebuild(self._records)

    @classmethod
    def from_json(cls, text: str, **kwargs) -> "MappingTable":
        """Parse the JSON array encoding; unknown or missing fields are errors."""
        try:
            records = _RECORD_LIST.validate_json(text) if text.strip() else []
        except ValidationError as e:
            raise InvalidRecordError(f"failed to parse hash mappings: {e}") from e
        return cls(records, **kwargs)

    def to_json(self) -> str:
        return json.dumps(
            [r.model_dump(by_alias=True) for r in self._records], indent=2
        )

    @property
    def records(self) -> List[MappingRecord]:
        return list(self._records)

    def __iter__(self) -> Iterator[MappingRecord]:
        return iter(list(self._records))

    def __len__(self) -> int:
        return len(self._records)

    def append(self, source_hash: str, overlay_hash: str, identity_key: str) -> MappingRecord:
        """Add a mapping, replacing the first record sharing either hash."""
        new_record = MappingRecord(
            source_hash=source_hash, overlay_hash=overlay_hash, identity_key=identity_key
        )
        kept: List[MappingRecord] = []
        replaced = False
        for record in self._records:
            if record.source_hash == source_hash or record.overlay_hash == overlay_hash:
                # First clash is replaced in place, later clashes are dropped
                if not replaced:
                    kept.append(new_record)
                    replaced = True
                continue
            kept.append(record)
        if not replaced:
            kept.append(new_record)
        self._records = kept

        self._index.rebuild(self._records)
        return new_record

    def find_by_source(self, source_hash: str) -> Optional[MappingRecord]:
        return self._index.by_source(source_hash)

    def find_by_overlay(self, overlay_hash: str) -> Optional[MappingRecord]:
        return self._index.by_overlay(overlay_hash)

    def find_by_source_prefix(self, prefix: str) -> Optional[MappingRecord]:
        """Match a full or abbreviated git hash; ambiguity is an error."""
        exact = self.find_by_source(prefix)
        if exact is not None:
            return exact
        found = {r.source_hash: r for r in self._records if r.source_hash.startswith(prefix)}
        if len(found) > 1:
            raise AmbiguousHashError(prefix, found)
        return next(iter(found.values()), None)

    def lookup_overlay(self, source_hash: str) -> str:
        record = self.find_by_source(source_hash)
        if record is None:
            raise NotFoundError(f"no overlay hash found for git hash {source_hash}")
        return record.overlay_hash

    def lookup_source(self, overlay_hash: str) -> str:
        record = self.find_by_overlay(overlay_hash)
        if record is None:
            raise NotFoundError(f"no git hash found for overlay hash {overlay_hash}")
        return record.source_hash

    def lookup_identity(self, hash_value: str) -> str:
        record = self._index.by_either(hash_value)
        if record is None:
            raise NotFoundError(f"no identity key found for hash {hash_value}")
        return record.identity_key


class MappingStore:
    """Persists the mapping table inside an overlay directory.

    The table lives in ``mappings/hash_mappings.json``; a copy is kept in the
    legacy ``nostr_mappings.json`` location for older readers. Every write
    rewrites both files, so callers must not run two writers at once.
    """

    def __init__(self, root: Path, index_factory: Callable[[], MappingIndex] = ScanIndex):
        self.root = Path(root)
        self.path = self.root / MAPPINGS_FILE
        self.legacy_path = self.root / LEGACY_MAPPINGS_FILE
        self.index_factory = index_factory

    def exists(self) -> bool:
        return self.path.is_file() or self.legacy_path.is_file()

    def load(self, required: bool = False) -> MappingTable:
        """Read the table; an absent table is empty unless ``required``."""
        for path in (self.path, self.legacy_path):
            if path.is_file():
                try:
                    text = path.read_text(encoding="utf-8")
                except OSError as e:
                    raise IOFailureError(f"failed to read hash mappings: {e}") from e
                if path == self.legacy_path:
                    log.info("legacy_mappings_used", path=str(path))
                return MappingTable.from_json(text, index_factory=self.index_factory)

        if required:
            raise NotFoundError(f"no hash mappings found in {self.root}")
        return MappingTable(index_factory=self.index_factory)

    def save(self, table: MappingTable) -> None:
        data = table.to_json()
        atomic_write(self.path, data)
        atomic_write(self.legacy_path, data)

    def append(self, source_hash: str, overlay_hash: str, identity_key: str) -> MappingRecord:
        """Read, update and rewrite the whole table."""
        table = self.load()
        record = table.append(source_hash, overlay_hash, identity_key)
        self.save(table)
        return record

    def lookup_overlay(self, source_hash: str) -> str:
        return self.load().lookup_overlay(source_hash)

    def lookup_source(self, overlay_hash: str) -> str:
        return self.load().lookup_source(overlay_hash)

    def lookup_identity(self, hash_value: str) -> str:
        return self.load().lookup_identity(hash_value)
