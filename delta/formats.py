"""On-disk encoding of signatures (``.sig``) and deltas (``.delta``)."""
from __future__ import annotations

import struct
from pathlib import Path
from typing import List

from .codec import CopyOp, Delta, DeltaOp, LiteralOp
from .errors import DeltaError, DeltaFormatError
from .signature import DIGEST_SIZE, STRONG_DIGEST_SIZE, BlockSignature, Signature, validate_block_size

SIGNATURE_SUFFIX = ".sig"
DELTA_SUFFIX = ".delta"

_FORMAT_VERSION = 1
_SIG_MAGIC = b"CVSG"
_DELTA_MAGIC = b"CVDL"
_SIG_HEADER = struct.Struct(">4sBIQI")
_SIG_BLOCK = struct.Struct(f">I{STRONG_DIGEST_SIZE}s")
_DELTA_HEADER = struct.Struct(">4sBQI")
_COPY = struct.Struct(">QI")
_LITERAL = struct.Struct(">I")
_TAG_COPY = b"C"
_TAG_LITERAL = b"L"


def encode_signature(signature: Signature) -> bytes:
    parts = [
        _SIG_HEADER.pack(
            _SIG_MAGIC,
            _FORMAT_VERSION,
            signature.block_size,
            signature.file_size,
            len(signature.blocks),
        ),
        signature.digest,
    ]
    for block in signature.blocks:
        parts.append(_SIG_BLOCK.pack(block.weak, block.strong))
    return b"".join(parts)


def decode_signature(payload: bytes) -> Signature:
    if len(payload) < _SIG_HEADER.size + DIGEST_SIZE:
        raise DeltaFormatError("signature truncated")
    magic, version, block_size, file_size, count = _SIG_HEADER.unpack_from(payload, 0)
    if magic != _SIG_MAGIC:
        raise DeltaFormatError("not a signature file")
    if version != _FORMAT_VERSION:
        raise DeltaFormatError(f"unsupported signature version {version}")
    try:
        block_size = validate_block_size(block_size)
    except DeltaError as exc:
        raise DeltaFormatError(str(exc)) from exc
    expected = -(-file_size // block_size)
    if count != expected:
        raise DeltaFormatError(f"signature lists {count} blocks, expected {expected}")
    offset = _SIG_HEADER.size
    digest = payload[offset : offset + DIGEST_SIZE]
    offset += DIGEST_SIZE
    if len(payload) != offset + count * _SIG_BLOCK.size:
        raise DeltaFormatError("signature size does not match its block count")
    blocks: List[BlockSignature] = []
    for index in range(count):
        weak, strong = _SIG_BLOCK.unpack_from(payload, offset)
        offset += _SIG_BLOCK.size
        length = min(block_size, file_size - index * block_size)
        blocks.append(BlockSignature(index=index, weak=weak, strong=strong, length=length))
    return Signature(block_size=block_size, file_size=file_size, digest=digest, blocks=blocks)


def encode_delta(delta: Delta) -> bytes:
    parts = [_DELTA_HEADER.pack(_DELTA_MAGIC, _FORMAT_VERSION, delta.target_size, len(delta.ops)), delta.basis_digest]
    for op in delta.ops:
        if isinstance(op, CopyOp):
            parts.append(_TAG_COPY + _COPY.pack(op.offset, op.length))
        else:
            parts.append(_TAG_LITERAL + _LITERAL.pack(len(op.data)))
            parts.append(op.data)
    return b"".join(parts)


def decode_delta(payload: bytes) -> Delta:
    if len(payload) < _DELTA_HEADER.size + DIGEST_SIZE:
        raise DeltaFormatError("delta truncated")
    magic, version, target_size, count = _DELTA_HEADER.unpack_from(payload, 0)
    if magic != _DELTA_MAGIC:
        raise DeltaFormatError("not a delta file")
    if version != _FORMAT_VERSION:
        raise DeltaFormatError(f"unsupported delta version {version}")
    offset = _DELTA_HEADER.size
    digest = payload[offset : offset + DIGEST_SIZE]
    offset += DIGEST_SIZE
    ops: List[DeltaOp] = []
    try:
        for _ in range(count):
            tag = payload[offset : offset + 1]
            offset += 1
            if tag == _TAG_COPY:
                start, length = _COPY.unpack_from(payload, offset)
                offset += _COPY.size
                ops.append(CopyOp(start, length))
            elif tag == _TAG_LITERAL:
                (length,) = _LITERAL.unpack_from(payload, offset)
                offset += _LITERAL.size
                data = payload[offset : offset + length]
                if len(data) != length:
                    raise DeltaFormatError("literal truncated")
                offset += length
                ops.append(LiteralOp(bytes(data)))
            else:
                raise DeltaFormatError(f"unknown delta operation {tag!r}")
    except struct.error as exc:
        raise DeltaFormatError("delta truncated") from exc
    if offset != len(payload):
        raise DeltaFormatError("trailing bytes after delta operations")
    return Delta(basis_digest=bytes(digest), target_size=target_size, ops=ops)


def write_signature(path: Path, signature: Signature) -> None:
    Path(path).write_bytes(encode_signature(signature))


def read_signature(path: Path) -> Signature:
    return decode_signature(Path(path).read_bytes())


def write_delta(path: Path, delta: Delta) -> None:
    Path(path).write_bytes(encode_delta(delta))


def read_delta(path: Path) -> Delta:
    return decode_delta(Path(path).read_bytes())


def _starts_with(path: Path, magic: bytes) -> bool:
    with open(path, "rb") as handle:
        return handle.read(len(magic)) == magic


def is_signature_file(path: Path) -> bool:
    """True when *path* carries the signature header, whatever its name."""
    return _starts_with(path, _SIG_MAGIC)


def is_delta_file(path: Path) -> bool:
    return _starts_with(path, _DELTA_MAGIC)


__all__ = [
    "DELTA_SUFFIX",
    "SIGNATURE_SUFFIX",
    "decode_delta",
    "decode_signature",
    "encode_delta",
    "encode_signature",
    "is_delta_file",
    "is_signature_file",
    "read_delta",
    "read_signature",
    "write_delta",
    "write_signature",
]
