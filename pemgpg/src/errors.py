"""Exception taxonomy for PEM chain decomposition and key conversion.

Every error carries the ``stage`` of the pipeline that failed so callers
(and the HTTP layer) can report where a request stopped without reading
server logs.
"""

from __future__ import annotations


class PemGpgError(Exception):
    """Base class for all pemgpg failures."""

    stage = "conversion"


class EmptyChainError(PemGpgError):
    """The input contained no decodable PEM block."""

    stage = "decompose"


class InvalidKeyEncodingError(PemGpgError):
    """The private key PEM block is missing or carries the wrong label."""

    stage = "decode"


class KeyParseError(PemGpgError):
    """The PKCS8 payload does not parse as a supported key."""

    stage = "parse"


class EntityBuildError(PemGpgError):
    """The OpenPGP entity could not be assembled from the key material."""

    stage = "entity"


class AlgorithmMismatchError(EntityBuildError):
    """The declared algorithm does not match the decoded key."""


class SelfSignatureError(PemGpgError):
    """Signing or verifying the user id binding failed."""

    stage = "self-signature"


class ArmorEncodeError(PemGpgError):
    """Serializing or finalizing an armored key failed."""

    stage = "armor"

    def __init__(self, message: str, variant: str | None = None):
        super().__init__(message)
        self.variant = variant


class TimestampParseError(PemGpgError):
    """The supplied timestamp is not a usable point in time."""

    stage = "timestamp"
