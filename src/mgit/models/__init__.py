"""Data models for mgit."""

from .commit import CommitRecord, Signature
from .mapping import MappingRecord
from .report import (
    HeadState,
    ReconstructionReport,
    VerificationFailure,
    VerificationReport,
)

__all__ = [
    "CommitRecord",
    "Signature",
    "MappingRecord",
    "HeadState",
    "ReconstructionReport",
    "VerificationFailure",
    "VerificationReport",
]
