"""PEM block stream and chain decomposition.

A PEM chain is any concatenation of ``-----BEGIN <label>-----`` /
``-----END <label>-----`` framed blocks, possibly separated by arbitrary
text. Blocks are decoded left to right; each one is re-encoded to its
canonical form (RFC 1421 headers, 64 column base64, ``\\n`` line endings)
so that callers receive stable text regardless of how the input was
wrapped.

Decoding follows the same rules as Go's ``encoding/pem``: BEGIN lines only
count at the start of the input or of a line, and a candidate
block with a mismatched END line or a corrupt body is skipped and the
search resumes after its BEGIN line. Running out of blocks is not an
error here; only :func:`decompose_chain` treats "no block at all" as one.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Final

from .errors import EmptyChainError

logger = logging.getLogger(__name__)

_LINE_WIDTH: Final[int] = 64
_PROC_TYPE: Final[str] = "Proc-Type"

_BEGIN_RE = re.compile(
    rb"(?:\A|(?<=\n))"
    rb"-----BEGIN (?P<label>[\x20-\x7e]*?)-----[ \t]*(?:\r?\n|\Z)"
)
_LINE_END_RE = re.compile(rb"[ \t]*(?:\r?\n|\Z)")
_WHITESPACE_RE = re.compile(rb"\s+")


@dataclass(frozen=True)
class PemBlock:
    """A decoded PEM block: type label, optional headers and raw payload."""

    label: str
    data: bytes
    headers: tuple[tuple[str, str], ...] = ()

    def encode(self) -> str:
        """Return the canonical PEM text for this block."""
        lines = [f"-----BEGIN {self.label}-----"]
        if self.headers:
            for key, value in _ordered_headers(self.headers):
                lines.append(f"{key}: {value}")
            lines.append("")
        payload = base64.b64encode(self.data).decode("ascii")
        lines.extend(
            payload[i : i + _LINE_WIDTH] for i in range(0, len(payload), _LINE_WIDTH)
        )
        lines.append(f"-----END {self.label}-----")
        return "\n".join(lines) + "\n"


def _ordered_headers(headers: tuple[tuple[str, str], ...]) -> list[tuple[str, str]]:
    # Proc-Type must come first (RFC 1421); the rest are sorted.
    merged = dict(headers)
    ordered = []
    if _PROC_TYPE in merged:
        ordered.append((_PROC_TYPE, merged.pop(_PROC_TYPE)))
    ordered.extend(sorted(merged.items()))
    return ordered


def _parse_body(body: bytes) -> tuple[tuple[tuple[str, str], ...], bytes] | None:
    lines = body.splitlines()
    headers: list[tuple[str, str]] = []
    idx = 0
    while idx < len(lines) and b":" in lines[idx]:
        key, _, value = lines[idx].partition(b":")
        try:
            headers.append((key.strip().decode("ascii"), value.strip().decode("ascii")))
        except UnicodeDecodeError:
            return None
        idx += 1
    encoded = _WHITESPACE_RE.sub(b"", b"".join(lines[idx:]))
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None
    return tuple(headers), data


def decode_block(data: bytes) -> tuple[PemBlock | None, bytes]:
    """Decode the next PEM block in ``data``.

    Returns the block and the unconsumed remainder. When no further block
    can be decoded, returns ``(None, data)``.
    """
    rest = data
    while True:
        begin = _BEGIN_RE.search(rest)
        if begin is None:
            return None, data

        label = begin.group("label")
        after = rest[begin.end() :]
        rest = after

        end_marker = b"-----END " + label + b"-----"
        end_idx = after.find(end_marker)
        if end_idx < 0:
            continue
        body = after[:end_idx]
        if body and not body.endswith(b"\n"):
            continue
        trailer = _LINE_END_RE.match(after, end_idx + len(end_marker))
        if trailer is None:
            continue

        parsed = _parse_body(body)
        if parsed is None:
            continue
        headers, payload = parsed
        block = PemBlock(label=label.decode("ascii"), data=payload, headers=headers)
        return block, after[trailer.end() :]


def iter_blocks(data: bytes) -> Iterator[PemBlock]:
    """Yield every PEM block in ``data`` in encounter order."""
    block, rest = decode_block(data)
    while block is not None:
        yield block
        block, rest = decode_block(rest)


@dataclass(frozen=True)
class PemChainResult:
    """Canonical elements of a decomposed chain.

    ``id`` is the SHA-256 of the raw input, usable as a content address.
    """

    id: str
    ordered: tuple[str, ...]

    @property
    def first(self) -> str:
        return self.ordered[0]

    @property
    def last(self) -> str:
        return self.ordered[-1]

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "first_pem": self.first,
            "last_pem": self.last,
            "pem_list": list(self.ordered),
        }


def decompose_chain(raw: bytes | str) -> PemChainResult:
    """Split a concatenated PEM chain into canonical PEM elements."""
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    digest = hashlib.sha256(raw).hexdigest()
    ordered = tuple(block.encode() for block in iter_blocks(raw))
    if not ordered:
        raise EmptyChainError("Failed to read anything in the pem chain")

    logger.debug("Decomposed pem chain %s into %d element(s)", digest, len(ordered))
    return PemChainResult(id=digest, ordered=ordered)
