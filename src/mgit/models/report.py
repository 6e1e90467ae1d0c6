"""Result models for HEAD inspection, reconstruction and verification."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel


class HeadState(BaseModel):
    """Contents of the overlay HEAD file."""

    symbolic: bool
    target: str  # Ref name when symbolic, overlay hash when detached

    def render(self) -> str:
        return f"ref: {self.target}" if self.symbolic else self.target


class FailureKind(str, Enum):
    """Kind of problem found while verifying the overlay graph."""

    MISSING_OBJECT = "missing_object"
    CORRUPT_OBJECT = "corrupt_object"
    MISSING_SOURCE = "missing_source"
    HASH_MISMATCH = "hash_mismatch"
    FIELD_MISMATCH = "field_mismatch"


class VerificationFailure(BaseModel):
    overlay_hash: str
    kind: FailureKind
    detail: str
    expected: Optional[str] = None


class VerificationReport(BaseModel):
    """Outcome of walking and rechecking the overlay graph."""

    start: str
    checked: int = 0
    failures: List[VerificationFailure] = []

    @property
    def valid(self) -> bool:
        return not self.failures

    def failures_for(self, overlay_hash: str) -> List[VerificationFailure]:
        return [f for f in self.failures if f.overlay_hash == overlay_hash]


class ReconstructionReport(BaseModel):
    """What a reconstruction run wrote and what it had to skip."""

    created: List[str] = []
    skipped: List[str] = []
    warnings: List[str] = []
    refs: Dict[str, str] = {}
    head: Optional[str] = None
