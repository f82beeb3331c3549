"""Rolling-checksum delta codec used for modified-only snapshots."""
from __future__ import annotations

from .codec import CopyOp, Delta, LiteralOp, apply_delta, build_delta
from .errors import BasisMismatch, DeltaError, DeltaFormatError
from .formats import DELTA_SUFFIX, SIGNATURE_SUFFIX, read_delta, read_signature, write_delta, write_signature
from .signature import DEFAULT_BLOCK_SIZE, Signature, build_signature

__all__ = [
    "BasisMismatch",
    "CopyOp",
    "DEFAULT_BLOCK_SIZE",
    "DELTA_SUFFIX",
    "Delta",
    "DeltaError",
    "DeltaFormatError",
    "LiteralOp",
    "SIGNATURE_SUFFIX",
    "Signature",
    "apply_delta",
    "build_delta",
    "build_signature",
    "read_delta",
    "read_signature",
    "write_delta",
    "write_signature",
]
