"""Block signatures built from rolling and strong checksums."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .errors import DeltaError

DEFAULT_BLOCK_SIZE = 2048
MIN_BLOCK_SIZE = 64
MAX_BLOCK_SIZE = 1024 * 1024
STRONG_DIGEST_SIZE = 16
DIGEST_SIZE = 32

_WEAK_MASK = 0xFFFF
_ROW_BATCH = 4096


def strong_checksum(chunk: bytes) -> bytes:
    return hashlib.blake2b(chunk, digest_size=STRONG_DIGEST_SIZE).digest()


def content_digest(content: bytes) -> bytes:
    return hashlib.sha256(content).digest()


def validate_block_size(block_size: int) -> int:
    size = int(block_size)
    if size < MIN_BLOCK_SIZE or size > MAX_BLOCK_SIZE:
        raise DeltaError(f"block size {size} outside [{MIN_BLOCK_SIZE}, {MAX_BLOCK_SIZE}]")
    return size


def rolling_checksums(data: np.ndarray, window: int) -> np.ndarray:
    """Return the weak checksum of every ``window``-sized run of *data*.

    Element ``k`` covers ``data[k:k + window]`` and equals the Adler-style
    sum ``(s1 & 0xffff) | (s2 & 0xffff) << 16`` where ``s1`` is the byte sum
    and ``s2`` the running sum of ``s1``. Prefix sums are kept in uint64 and
    wrap modulo 2**64, which leaves the low 16 bits exact.
    """
    count = int(data.size) - int(window) + 1
    if window <= 0 or count <= 0:
        return np.empty(0, dtype=np.uint64)
    values = data.astype(np.uint64)
    positions = np.arange(values.size, dtype=np.uint64)
    s1 = np.zeros(values.size + 1, dtype=np.uint64)
    s2 = np.zeros(values.size + 1, dtype=np.uint64)
    np.cumsum(values, out=s1[1:])
    np.cumsum(values * positions, out=s2[1:])
    a = s1[window:] - s1[:count]
    ends = positions[:count] + np.uint64(window)
    b = ends * a - (s2[window:] - s2[:count])
    return (a & np.uint64(_WEAK_MASK)) | ((b & np.uint64(_WEAK_MASK)) << np.uint64(16))


def weak_checksum(chunk: bytes) -> int:
    if not chunk:
        return 0
    data = np.frombuffer(chunk, dtype=np.uint8)
    return int(rolling_checksums(data, data.size)[0])


def _block_checksums(data: np.ndarray, block_size: int) -> np.ndarray:
    """Weak checksums of the consecutive full blocks of *data*."""
    full = int(data.size) // block_size
    result = np.empty(full, dtype=np.uint64)
    weights = np.arange(block_size, 0, -1, dtype=np.uint64)
    for start in range(0, full, _ROW_BATCH):
        stop = min(start + _ROW_BATCH, full)
        rows = data[start * block_size : stop * block_size].reshape(stop - start, block_size).astype(np.uint64)
        a = rows.sum(axis=1, dtype=np.uint64)
        b = (rows * weights).sum(axis=1, dtype=np.uint64)
        result[start:stop] = (a & np.uint64(_WEAK_MASK)) | ((b & np.uint64(_WEAK_MASK)) << np.uint64(16))
    return result


@dataclass(slots=True)
class BlockSignature:
    index: int
    weak: int
    strong: bytes
    length: int


@dataclass(slots=True)
class Signature:
    """Fingerprint of a basis: per-block checksums plus a whole-content digest."""

    block_size: int
    file_size: int
    digest: bytes
    blocks: List[BlockSignature] = field(default_factory=list)

    def offset_of(self, block: BlockSignature) -> int:
        return block.index * self.block_size

    @property
    def tail(self) -> Optional[BlockSignature]:
        """The trailing short block, if the basis size is not a block multiple."""
        if self.blocks and self.blocks[-1].length < self.block_size:
            return self.blocks[-1]
        return None

    def weak_table(self) -> Dict[int, List[BlockSignature]]:
        table: Dict[int, List[BlockSignature]] = {}
        for block in self.blocks:
            if block.length != self.block_size:
                continue
            table.setdefault(block.weak, []).append(block)
        return table


def build_signature(content: bytes, *, block_size: int = DEFAULT_BLOCK_SIZE) -> Signature:
    block_size = validate_block_size(block_size)
    content = bytes(content)
    data = np.frombuffer(content, dtype=np.uint8)
    blocks: List[BlockSignature] = []
    for index, weak in enumerate(_block_checksums(data, block_size)):
        offset = index * block_size
        chunk = content[offset : offset + block_size]
        blocks.append(BlockSignature(index=index, weak=int(weak), strong=strong_checksum(chunk), length=block_size))
    remainder = len(content) % block_size
    if remainder:
        chunk = content[len(content) - remainder :]
        blocks.append(
            BlockSignature(
                index=len(blocks),
                weak=weak_checksum(chunk),
                strong=strong_checksum(chunk),
                length=remainder,
            )
        )
    return Signature(block_size=block_size, file_size=len(content), digest=content_digest(content), blocks=blocks)


__all__ = [
    "BlockSignature",
    "DEFAULT_BLOCK_SIZE",
    "Signature",
    "build_signature",
    "content_digest",
    "rolling_checksums",
    "strong_checksum",
    "validate_block_size",
    "weak_checksum",
]
