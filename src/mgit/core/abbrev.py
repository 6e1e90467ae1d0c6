"""Resolution of abbreviated overlay hashes against the sharded object store."""

from pathlib import Path
from typing import List

from mgit.core.errors import AmbiguousHashError, InvalidHashError, NotFoundError
from mgit.core.hashing import is_hex

MIN_PREFIX_LENGTH = 4


class AbbreviationResolver:
    """Expands a hash prefix to the full overlay hash of a stored object."""

    def __init__(self, objects_dir: Path):
        self.objects_dir = Path(objects_dir)

    def matches(self, prefix: str) -> List[str]:
        """List every stored hash starting with ``prefix``.

        Prefixes of one or two characters list the whole shard directory;
        longer ones list the two-character shard and filter on the remainder.
        """
        prefix = prefix.lower()
        if not is_hex(prefix):
            raise InvalidHashError(f"not a hex hash prefix: {prefix!r}")

        if len(prefix) == 1:
            shards = [
                d for d in self._shards() if d.name.startswith(prefix)
            ]
            return sorted(
                shard.name + entry.name
                for shard in shards
                for entry in self._entries(shard)
            )

        shard = self.objects_dir / prefix[:2]
        rest = prefix[2:]
        return sorted(
            shard.name + entry.name
            for entry in self._entries(shard)
            if entry.name.startswith(rest)
        )

    def resolve(self, prefix: str) -> str:
        """Return the single full hash matching ``prefix``."""
        if len(prefix) < MIN_PREFIX_LENGTH:
            raise InvalidHashError(
                f"hash prefix {prefix!r} too short, need at least "
                f"{MIN_PREFIX_LENGTH} characters"
            )

        found = self.matches(prefix)
        if not found:
            raise NotFoundError(f"no object found with hash prefix {prefix}")
        if len(found) > 1:
            raise AmbiguousHashError(prefix, found)
        return found[0]

    def _shards(self) -> List[Path]:
        if not self.objects_dir.is_dir():
            return []
        return [d for d in self.objects_dir.iterdir() if d.is_dir() and len(d.name) == 2]

    @staticmethod
    def _entries(shard: Path) -> List[Path]:
        if not shard.is_dir():
            return []
        # Skip in-flight temp files from atomic writes
        return [e for e in shard.iterdir() if e.is_file() and not e.name.startswith(".")]
