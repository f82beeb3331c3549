"""Build and apply binary deltas against a block signature.

A delta is a list of operations that rebuild target content from a basis:
``CopyOp`` copies a byte range of the basis, ``LiteralOp`` inserts bytes
carried in the delta itself. Matching follows the rsync scheme: the rolling
checksum of every window of the target is compared against the weak
checksums of the basis blocks and candidates are confirmed with the strong
checksum.

Basis verification is optional. ``apply_delta`` trusts the caller by
default, so a basis that drifted since the signature was taken yields the
operations replayed over the current bytes, not the original target.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union

import numpy as np

from .errors import BasisMismatch, DeltaError
from .signature import (
    BlockSignature,
    Signature,
    content_digest,
    rolling_checksums,
    strong_checksum,
    weak_checksum,
)

_SEGMENT_WINDOWS = 1 << 18


@dataclass(slots=True, frozen=True)
class CopyOp:
    offset: int
    length: int


@dataclass(slots=True, frozen=True)
class LiteralOp:
    data: bytes


DeltaOp = Union[CopyOp, LiteralOp]


@dataclass(slots=True)
class Delta:
    basis_digest: bytes
    target_size: int
    ops: List[DeltaOp] = field(default_factory=list)

    @property
    def has_copies(self) -> bool:
        return any(isinstance(op, CopyOp) for op in self.ops)

    @property
    def literal_bytes(self) -> int:
        return sum(len(op.data) for op in self.ops if isinstance(op, LiteralOp))

    @property
    def copied_bytes(self) -> int:
        return sum(op.length for op in self.ops if isinstance(op, CopyOp))


def _append_literal(ops: List[DeltaOp], chunk: bytes) -> None:
    if not chunk:
        return
    if ops and isinstance(ops[-1], LiteralOp):
        ops[-1] = LiteralOp(ops[-1].data + chunk)
        return
    ops.append(LiteralOp(bytes(chunk)))


def _append_copy(ops: List[DeltaOp], offset: int, length: int) -> None:
    if ops and isinstance(ops[-1], CopyOp):
        last = ops[-1]
        if last.offset + last.length == offset:
            ops[-1] = CopyOp(last.offset, last.length + length)
            return
    ops.append(CopyOp(offset, length))


def _candidate_windows(data: np.ndarray, block_size: int, keys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Positions (and weak sums) of every window whose weak sum hits a basis block."""
    count = int(data.size) - block_size + 1
    if count <= 0 or keys.size == 0:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.uint64)
    positions: List[np.ndarray] = []
    weaks: List[np.ndarray] = []
    for start in range(0, count, _SEGMENT_WINDOWS):
        stop = min(start + _SEGMENT_WINDOWS, count)
        weak = rolling_checksums(data[start : stop + block_size - 1], block_size)
        hits = np.flatnonzero(np.isin(weak, keys))
        if hits.size:
            positions.append(hits.astype(np.int64) + start)
            weaks.append(weak[hits])
    if not positions:
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.uint64)
    return np.concatenate(positions), np.concatenate(weaks)


def _confirm(
    window: bytes,
    candidates: Iterable[BlockSignature],
    signature: Signature,
    preferred_offset: Optional[int],
) -> Optional[BlockSignature]:
    strong = strong_checksum(window)
    found: Optional[BlockSignature] = None
    for block in candidates:
        if block.strong != strong:
            continue
        if preferred_offset is not None and signature.offset_of(block) == preferred_offset:
            return block
        if found is None:
            found = block
    return found


def build_delta(content: bytes, signature: Signature) -> Delta:
    """Describe *content* as copies from the basis behind *signature* plus literals."""
    content = bytes(content)
    size = len(content)
    block_size = signature.block_size
    table = signature.weak_table()
    data = np.frombuffer(content, dtype=np.uint8)
    keys = np.fromiter(table.keys(), dtype=np.uint64, count=len(table))
    positions, weaks = _candidate_windows(data, block_size, keys)

    ops: List[DeltaOp] = []
    cursor = 0
    idx = 0
    while idx < positions.size:
        pos = int(positions[idx])
        preferred = None
        if ops and isinstance(ops[-1], CopyOp) and pos == cursor:
            preferred = ops[-1].offset + ops[-1].length
        block = _confirm(content[pos : pos + block_size], table.get(int(weaks[idx]), ()), signature, preferred)
        if block is None:
            idx += 1
            continue
        _append_literal(ops, content[cursor:pos])
        _append_copy(ops, signature.offset_of(block), block_size)
        cursor = pos + block_size
        idx = int(np.searchsorted(positions, cursor, side="left"))

    tail = signature.tail
    if tail is not None and size - cursor >= tail.length:
        start = size - tail.length
        chunk = content[start:]
        if weak_checksum(chunk) == tail.weak and strong_checksum(chunk) == tail.strong:
            _append_literal(ops, content[cursor:start])
            _append_copy(ops, signature.offset_of(tail), tail.length)
            cursor = size
    _append_literal(ops, content[cursor:])
    return Delta(basis_digest=signature.digest, target_size=size, ops=ops)


def apply_delta(basis: bytes, delta: Delta, *, verify: bool = False) -> bytes:
    """Replay *delta* over *basis*.

    With ``verify`` the SHA-256 of *basis* must equal the digest recorded when
    the delta was built, otherwise :class:`BasisMismatch` is raised.
    """
    view = memoryview(bytes(basis))
    if verify and content_digest(view) != delta.basis_digest:
        raise BasisMismatch("basis content differs from the signature the delta was built against")
    out = bytearray()
    for op in delta.ops:
        if isinstance(op, CopyOp):
            end = op.offset + op.length
            if end > len(view):
                raise DeltaError(f"copy range [{op.offset}, {end}) exceeds basis of {len(view)} bytes")
            out += view[op.offset : end]
        else:
            out += op.data
    if len(out) != delta.target_size:
        raise DeltaError(f"reconstructed {len(out)} bytes, expected {delta.target_size}")
    return bytes(out)


__all__ = ["CopyOp", "Delta", "DeltaOp", "LiteralOp", "apply_delta", "build_delta"]
