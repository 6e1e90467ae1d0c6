"""Mapping between source (git) hashes and overlay hashes."""

from pydantic import BaseModel, Field


class MappingRecord(BaseModel):
    """Links a git commit, its overlay hash and the identity that authored it.

    The JSON encoding keeps the field names peers already exchange:
    ``git_hash``, ``mgit_hash`` and ``pubkey``.
    """

    source_hash: str = Field(alias="git_hash")
    overlay_hash: str = Field(alias="mgit_hash")
    identity_key: str = Field(alias="pubkey")

    model_config = {"extra": "forbid", "populate_by_name": True}

    def matches(self, hash_value: str) -> bool:
        """Check whether either side of the mapping equals ``hash_value``."""
        return hash_value in (self.source_hash, self.overlay_hash)
