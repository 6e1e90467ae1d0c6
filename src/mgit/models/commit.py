"""Overlay commit record model."""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field


class Signature(BaseModel):
    """Author or committer of an overlay commit."""

    name: str
    email: str
    pubkey: Optional[str] = None
    when: datetime

    model_config = {"extra": "forbid"}

    @property
    def unix_time(self) -> int:
        """Timestamp as whole Unix seconds, the resolution used for hashing."""
        return int(self.when.timestamp())


class CommitRecord(BaseModel):
    """Represents one commit in the overlay history."""

    type: Literal["commit"] = "commit"
    overlay_hash: str = Field(validation_alias=AliasChoices("overlay_hash", "mgit_hash"))
    source_hash: str = Field(validation_alias=AliasChoices("source_hash", "git_hash"))
    tree_hash: str
    parent_hashes: List[str] = []  # Overlay hashes, in source parent order
    author: Signature
    committer: Signature
    message: str
    metadata: Dict[str, str] = {}

    model_config = {"extra": "forbid"}

    @property
    def identity_key(self) -> str:
        """Identity key bound into this commit's overlay hash."""
        return self.author.pubkey or ""

    @property
    def schema_version(self) -> Optional[str]:
        return self.metadata.get("version")

    @property
    def short_hash(self) -> str:
        return self.overlay_hash[:7]

    @property
    def summary(self) -> str:
        """First line of the commit message."""
        return self.message.split("\n", 1)[0]
