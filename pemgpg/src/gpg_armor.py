"""Convert a PKCS8 private key into armored OpenPGP public/private keys.

This is the whole conversion pipeline::

    PEM text -> decode_private_key -> build_entity -> encode_key (x2)

The creation time of the key and of its self-signature is always the
caller's timestamp, so the same inputs give the same armored output for
RSA keys (ECDSA signatures are randomized, everything else is stable).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .armor import encode_key
from .errors import AlgorithmMismatchError, TimestampParseError
from .key_decoder import KeyAlgorithm, decode_private_key
from .pgp_entity import PgpIdentity, build_entity

logger = logging.getLogger(__name__)

_RFC3339_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[Tt](?P<time>\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    if not isinstance(value, str) or not value.strip():
        raise TimestampParseError("timestamp must be a non-empty RFC 3339 string")
    match = _RFC3339_RE.match(value.strip())
    if match is None:
        raise TimestampParseError(f"timestamp '{value}' is not RFC 3339")

    frac = (match.group("frac") or "")[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    try:
        return datetime.fromisoformat(
            f"{match.group('date')}T{match.group('time')}.{frac}{offset}"
        )
    except ValueError as exc:
        raise TimestampParseError(f"timestamp '{value}' is invalid: {exc}") from exc


@dataclass(frozen=True)
class GpgArmorResult:
    public_key: str
    private_key: str
    fingerprint: str

    @property
    def id(self) -> str:
        return self.public_key

    def as_dict(self) -> dict[str, Any]:
        return {
            "gpg_armor_public_key": self.public_key,
            "gpg_armor_private_key": self.private_key,
            "id": self.id,
            "fingerprint": self.fingerprint,
        }


def _as_algorithm(algorithm: KeyAlgorithm | str) -> KeyAlgorithm:
    try:
        return KeyAlgorithm(algorithm)
    except ValueError:
        allowed = ", ".join(a.value for a in KeyAlgorithm)
        raise AlgorithmMismatchError(
            f"Permitted value for algorithm can only be one of the following: {allowed}."
        ) from None


def convert_private_key(
    private_key_pem: str | bytes,
    algorithm: KeyAlgorithm | str,
    name: str,
    email: str,
    timestamp: datetime | str,
) -> GpgArmorResult:
    """Convert a PKCS8 PEM private key into armored OpenPGP keys.

    Args:
        private_key_pem: a single ``PRIVATE KEY`` PEM block
        algorithm: ``rsa`` or ``ecdsa``; must match the decoded key
        name: user id name
        email: user id email
        timestamp: creation time, an aware datetime or RFC 3339 string

    Raises:
        PemGpgError: subclass identifying the failed stage
        ValueError: if ``name`` or ``email`` is empty
    """
    if isinstance(timestamp, str):
        timestamp = parse_timestamp(timestamp)
    algorithm = _as_algorithm(algorithm)
    identity = PgpIdentity(name=name, email=email, created=timestamp)

    key = decode_private_key(private_key_pem)
    entity = build_entity(key, algorithm, identity)

    public_key = encode_key(entity, include_private=False)
    private_key = encode_key(entity, include_private=True)

    logger.info(
        "Converted %s private key into OpenPGP key %s",
        algorithm.value,
        entity.fingerprint,
    )
    return GpgArmorResult(
        public_key=public_key,
        private_key=private_key,
        fingerprint=entity.fingerprint,
    )
