"""Blob codec: structured sub-documents <-> opaque column bytes.

The default codec writes canonical JSON (sorted keys, no whitespace
separators, ``ensure_ascii=True``, UTF-8), the same form used for content
hashing elsewhere, so equal documents always produce equal blobs.
"""

from __future__ import annotations

import json
from typing import Any, Protocol, runtime_checkable

from larder.core.errors import DecodeFailure, EncodeFailure


@runtime_checkable
class BlobCodec(Protocol):
    """Anything with ``encode``/``decode`` of this shape can back the store.

    ``decode(encode(v))`` must reproduce a value equal to ``v`` for nested
    dicts, lists, strings, numbers, booleans and ``None``. Other sequences
    such as tuples are stored as arrays and come back as lists.
    """

    def encode(self, value: Any) -> bytes:
        ...

    def decode(self, data: bytes) -> Any:
        ...


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
    ).encode("utf-8")


def _check_keys(value: Any, path: str = "$") -> None:
    """Reject mapping keys JSON would silently coerce to strings."""
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodeFailure(
                    f"Unsupported mapping key {key!r} at {path}: keys must be strings"
                )
            _check_keys(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_keys(item, f"{path}[{index}]")


class JsonBlobCodec:
    """Canonical-JSON implementation of :class:`BlobCodec`.

    Tuples encode exactly like lists, so ``(1, 2)`` decodes as ``[1, 2]``.
    """

    def encode(self, value: Any) -> bytes:
        try:
            data = canonical_json_bytes(value)
        except (TypeError, ValueError) as exc:
            # ValueError covers circular references and NaN/Infinity.
            raise EncodeFailure(f"Cannot encode value for storage: {exc}") from exc
        _check_keys(value)
        return data

    def decode(self, data: bytes) -> Any:
        if isinstance(data, memoryview):
            data = data.tobytes()
        try:
            return json.loads(data)
        except (TypeError, ValueError) as exc:
            # json.JSONDecodeError and UnicodeDecodeError are both ValueErrors.
            raise DecodeFailure(f"Cannot decode stored blob: {exc}") from exc

    def __repr__(self) -> str:
        return "JsonBlobCodec()"
