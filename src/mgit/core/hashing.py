"""Overlay hash derivation.

An overlay hash is a SHA-1 digest over a commit's tree hash, the overlay
hashes of its parents, the author and committer signatures and the identity
key of the author. Two schemes exist:

``legacy``
    Matches hashes produced by existing deployments: the committer string
    carries a formatting artifact and is digested twice, and the commit
    message is never digested.

``v2``
    The committer string is digested once with the identity key, followed by
    the commit message.

The scheme that produced a record is named by its ``metadata["version"]``.
"""

import hashlib
from enum import Enum
from typing import Optional, Sequence

from mgit.models.commit import Signature

HASH_HEX_LENGTH = 40
HASH_BYTE_LENGTH = 20
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class HashScheme(str, Enum):
    """Digest layout used to derive overlay hashes."""

    LEGACY = "legacy"
    V2 = "v2"

    @property
    def schema_version(self) -> str:
        return _SCHEMA_VERSIONS[self]

    @classmethod
    def for_version(
        cls, version: Optional[str], default: Optional["HashScheme"] = None
    ) -> "HashScheme":
        """Map a record's schema-version tag back to the scheme that made it."""
        for scheme, tag in _SCHEMA_VERSIONS.items():
            if tag == version:
                return scheme
        return default if default is not None else cls.V2


_SCHEMA_VERSIONS = {
    HashScheme.LEGACY: "1.0",
    HashScheme.V2: "2.0",
}

DEFAULT_SCHEME = HashScheme.V2


def hash_to_bytes(hex_hash: str) -> bytes:
    """Decode a hex hash into a fixed 20-byte buffer.

    Decoding stops at the first invalid pair; the rest of the buffer is
    zero-filled. Placeholder parents and short hashes therefore still
    contribute deterministic bytes.
    """
    out = bytearray(HASH_BYTE_LENGTH)
    pairs = min(len(hex_hash) // 2, HASH_BYTE_LENGTH)
    for i in range(pairs):
        pair = hex_hash[2 * i : 2 * i + 2]
        if pair[0] not in _HEX_DIGITS or pair[1] not in _HEX_DIGITS:
            break
        out[i] = int(pair, 16)
    return bytes(out)


def is_full_hash(value: str) -> bool:
    return len(value) == HASH_HEX_LENGTH and all(c in _HEX_DIGITS for c in value)


def is_hex(value: str) -> bool:
    return bool(value) and all(c in _HEX_DIGITS for c in value)


def _signature_line(sig: Signature, identity_key: str) -> str:
    return f"{sig.name} <{sig.email}> {sig.unix_time} {identity_key}"


def _legacy_committer_line(sig: Signature, identity_key: str) -> str:
    # Byte-identical to what deployed writers produced: their formatter was
    # handed one more argument than its format string had verbs
    return f"{sig.name} <{sig.email}> {sig.unix_time}%!(EXTRA string={identity_key})"


def compute(
    tree_hash: str,
    parent_overlay_hashes: Sequence[str],
    author: Signature,
    committer: Signature,
    identity_key: str,
    message: str,
    scheme: HashScheme = DEFAULT_SCHEME,
) -> str:
    """Compute the overlay hash of a commit as 40 lowercase hex characters."""
    hasher = hashlib.sha1()

    hasher.update(hash_to_bytes(tree_hash))
    for parent in parent_overlay_hashes:
        hasher.update(hash_to_bytes(parent))

    hasher.update(_signature_line(author, identity_key).encode("utf-8"))

    if scheme is HashScheme.LEGACY:
        committer_line = _legacy_committer_line(committer, identity_key).encode("utf-8")
        hasher.update(committer_line)
        hasher.update(committer_line)
    else:
        hasher.update(_signature_line(committer, identity_key).encode("utf-8"))
        hasher.update(message.encode("utf-8"))

    return hasher.hexdigest()
