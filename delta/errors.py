"""Error hierarchy for the delta codec."""
from __future__ import annotations


class DeltaError(RuntimeError):
    """Base exception for signature and delta failures."""


class DeltaFormatError(DeltaError):
    """Raised when a serialized signature or delta cannot be decoded."""


class BasisMismatch(DeltaError):
    """Raised when basis verification is requested and the basis has drifted."""


__all__ = ["BasisMismatch", "DeltaError", "DeltaFormatError"]
