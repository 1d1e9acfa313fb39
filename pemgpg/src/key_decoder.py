"""Decode a PEM encoded PKCS8 private key into plain key material.

The result is a small tagged union (:class:`RSAKeyMaterial` or
:class:`ECKeyMaterial`) holding the integers recovered from the input.
Nothing is regenerated: the EC public point is the one the decoded key
carries, not a fresh ``d * G``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Final, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from .errors import InvalidKeyEncodingError, KeyParseError
from .pem_chain import decode_block

logger = logging.getLogger(__name__)

PKCS8_LABEL: Final[str] = "PRIVATE KEY"


class KeyAlgorithm(str, Enum):
    RSA = "rsa"
    ECDSA = "ecdsa"

    def matches(self, key: AsymmetricKey) -> bool:
        return key.algorithm is self


@dataclass(frozen=True)
class RSAKeyMaterial:
    n: int
    e: int
    d: int
    p: int
    q: int

    algorithm = KeyAlgorithm.RSA

    @property
    def key_size(self) -> int:
        return self.n.bit_length()


@dataclass(frozen=True)
class ECKeyMaterial:
    curve: str
    x: int
    y: int
    d: int

    algorithm = KeyAlgorithm.ECDSA


AsymmetricKey = Union[RSAKeyMaterial, ECKeyMaterial]


def _as_bytes(pem: str | bytes) -> bytes:
    if isinstance(pem, str):
        return pem.encode("utf-8")
    return pem


def decode_private_key(pem: str | bytes) -> AsymmetricKey:
    """Parse a single ``PRIVATE KEY`` PEM block as PKCS8.

    Raises :class:`InvalidKeyEncodingError` when the block is absent,
    mislabelled or followed by further blocks, and :class:`KeyParseError`
    when the payload is not an RSA or elliptic-curve PKCS8 key.
    """
    block, rest = decode_block(_as_bytes(pem))
    if block is None or block.label != PKCS8_LABEL:
        raise InvalidKeyEncodingError("Failed to decode pem encoded private_key.")
    trailing, _ = decode_block(rest)
    if trailing is not None:
        raise InvalidKeyEncodingError(
            "Failed to decode pem encoded private_key: expected a single "
            f"PEM block, found another '{trailing.label}' block."
        )

    try:
        key = serialization.load_der_private_key(block.data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyParseError(f"Failed to parse private_key: {exc}.") from exc

    if isinstance(key, rsa.RSAPrivateKey):
        numbers = key.private_numbers()
        material: AsymmetricKey = RSAKeyMaterial(
            n=numbers.public_numbers.n,
            e=numbers.public_numbers.e,
            d=numbers.d,
            p=numbers.p,
            q=numbers.q,
        )
    elif isinstance(key, ec.EllipticCurvePrivateKey):
        numbers = key.private_numbers()
        material = ECKeyMaterial(
            curve=key.curve.name,
            x=numbers.public_numbers.x,
            y=numbers.public_numbers.y,
            d=numbers.private_value,
        )
    else:
        raise KeyParseError(
            f"Failed to parse private_key: unsupported key type {type(key).__name__}."
        )

    logger.debug("Decoded %s private key", material.algorithm.value)
    return material
