"""OpenPGP ASCII armor (RFC 4880, section 6).

:class:`ArmorWriter` is a streaming encoder: bytes are written in any
chunking, complete 64 column base64 lines are emitted into an in-memory
buffer as soon as enough input is available. The binary input is also
kept so that closing the writer can append the CRC-24 checksum (computed
by PGPy's ``Armorable.crc24``) and the END line; the armored text only
becomes readable after that. Used as a context manager the writer is
closed on success and discarded on error, so a half-written block is
never returned.
"""

from __future__ import annotations

import base64
import io
import logging
from typing import Final

from pgpy.types import Armorable

from .errors import ArmorEncodeError
from .pgp_entity import PgpEntity

logger = logging.getLogger(__name__)

PUBLIC_KEY_BLOCK: Final[str] = "PGP PUBLIC KEY BLOCK"
PRIVATE_KEY_BLOCK: Final[str] = "PGP PRIVATE KEY BLOCK"

# 48 raw bytes encode to exactly one 64 character base64 line.
_CHUNK: Final[int] = 48


class ArmorWriter:
    """Incremental armor encoder backed by :class:`io.BytesIO`."""

    def __init__(self, block_type: str, headers: dict[str, str] | None = None):
        self.block_type = block_type
        self._sink = io.BytesIO()
        self._pending = b""
        self._raw = io.BytesIO()
        self._closed = False
        self._aborted = False

        self._sink.write(f"-----BEGIN {block_type}-----\n".encode("ascii"))
        for key, value in (headers or {}).items():
            self._sink.write(f"{key}: {value}\n".encode("utf-8"))
        self._sink.write(b"\n")

    def __enter__(self) -> ArmorWriter:
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.abort()
            return False
        self.close()
        return False

    def write(self, data: bytes) -> int:
        if self._closed or self._aborted:
            raise ArmorEncodeError(f"write to finalized {self.block_type} writer")
        self._raw.write(data)
        buffered = self._pending + bytes(data)
        whole = len(buffered) - len(buffered) % _CHUNK
        for i in range(0, whole, _CHUNK):
            self._sink.write(base64.b64encode(buffered[i : i + _CHUNK]) + b"\n")
        self._pending = buffered[whole:]
        return len(data)

    def close(self) -> None:
        if self._aborted:
            raise ArmorEncodeError(f"{self.block_type} writer was aborted")
        if self._closed:
            return
        if self._pending:
            self._sink.write(base64.b64encode(self._pending) + b"\n")
            self._pending = b""
        crc = Armorable.crc24(self._raw.getvalue())
        checksum = base64.b64encode(crc.to_bytes(3, "big"))
        self._sink.write(b"=" + checksum + b"\n")
        self._sink.write(f"-----END {self.block_type}-----\n".encode("ascii"))
        self._closed = True

    def abort(self) -> None:
        self._aborted = True
        self._pending = b""
        self._raw = io.BytesIO()
        self._sink = io.BytesIO()

    @property
    def closed(self) -> bool:
        return self._closed

    def getvalue(self) -> str:
        if not self._closed:
            raise ArmorEncodeError(
                f"{self.block_type} read before the armor trailer was written"
            )
        return self._sink.getvalue().decode("utf-8")


def encode_key(entity: PgpEntity, include_private: bool) -> str:
    """Armor the public or the secret transferable key of ``entity``."""
    variant = "private" if include_private else "public"
    block_type = PRIVATE_KEY_BLOCK if include_private else PUBLIC_KEY_BLOCK
    try:
        key = entity.key if include_private else entity.public_key
        with ArmorWriter(block_type) as writer:
            writer.write(bytes(key))
        armored = writer.getvalue()
    except Exception as exc:
        raise ArmorEncodeError(
            f"Failed to encode {variant} key in gpg armor format: {exc}.",
            variant=variant,
        ) from exc

    logger.debug("Armored %s key for %s", variant, entity.fingerprint)
    return armored
