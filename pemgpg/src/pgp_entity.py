"""Build a self-signed OpenPGP entity around existing key material.

PGPy only knows how to create primary keys by generating them. Here the
version 4 secret key packet is assembled the same way
``PrivKeyV4.new`` does it, except that the key material fields are copied
from the decoded PKCS8 key instead of being generated. The user id is then
added with a positive self-certification and checked against the public
half before the entity is handed out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Final

from pgpy import PGPKey, PGPSignature, PGPUID
from pgpy.constants import (
    CompressionAlgorithm,
    ECPointFormat,
    EllipticCurveOID,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)
from pgpy.packet.fields import MPI, ECPoint
from pgpy.packet.packets import PrivKeyV4

from .errors import (
    AlgorithmMismatchError,
    EntityBuildError,
    SelfSignatureError,
    TimestampParseError,
)
from .key_decoder import AsymmetricKey, ECKeyMaterial, KeyAlgorithm, RSAKeyMaterial

logger = logging.getLogger(__name__)

# OpenPGP stores times as unsigned 32-bit seconds since the epoch.
_MAX_OPENPGP_TIME: Final[int] = 2**32 - 1

# cryptography curve name -> (OpenPGP curve OID, field size in bits)
# No Brainpool: PGPy's Brainpool curve classes no longer instantiate under
# current cryptography releases.
_CURVES: Final[dict[str, tuple[EllipticCurveOID, int]]] = {
    "secp256r1": (EllipticCurveOID.NIST_P256, 256),
    "secp384r1": (EllipticCurveOID.NIST_P384, 384),
    "secp521r1": (EllipticCurveOID.NIST_P521, 521),
    "secp256k1": (EllipticCurveOID.SECP256K1, 256),
}

_KEY_USAGE: Final = {KeyFlags.Certify, KeyFlags.Sign}
_HASH_PREFS: Final = [HashAlgorithm.SHA256, HashAlgorithm.SHA384, HashAlgorithm.SHA512]
_CIPHER_PREFS: Final = [
    SymmetricKeyAlgorithm.AES256,
    SymmetricKeyAlgorithm.AES192,
    SymmetricKeyAlgorithm.AES128,
]
_COMPRESSION_PREFS: Final = [
    CompressionAlgorithm.ZLIB,
    CompressionAlgorithm.BZ2,
    CompressionAlgorithm.ZIP,
    CompressionAlgorithm.Uncompressed,
]


@dataclass(frozen=True)
class PgpIdentity:
    name: str
    email: str
    created: datetime

    def __post_init__(self):
        if not self.name or not self.email:
            raise ValueError("name and email must be non-empty strings")

    @property
    def user_id(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True, eq=False)
class PgpEntity:
    """A primary secret key with its self-certified user id."""

    identity: PgpIdentity
    key: PGPKey

    @property
    def public_key(self) -> PGPKey:
        return self.key.pubkey

    @property
    def fingerprint(self) -> str:
        return str(self.key.fingerprint).replace(" ", "")

    @property
    def self_signatures(self) -> list[PGPSignature]:
        return [uid.selfsig for uid in self.key.userids]


def openpgp_creation_time(created: datetime) -> datetime:
    """Normalize ``created`` to a whole-second UTC datetime OpenPGP can store."""
    if created.tzinfo is None or created.utcoffset() is None:
        raise TimestampParseError("timestamp must carry a timezone offset")
    created = created.astimezone(timezone.utc).replace(microsecond=0)
    if not 0 <= created.timestamp() <= _MAX_OPENPGP_TIME:
        raise TimestampParseError(
            f"timestamp {created.isoformat()} is outside the OpenPGP time range"
        )
    return created


def _fill_rsa(packet: PrivKeyV4, key: RSAKeyMaterial) -> None:
    packet.pkalg = PubKeyAlgorithm.RSAEncryptOrSign
    material = packet.keymaterial
    material.n = MPI(key.n)
    material.e = MPI(key.e)
    material.d = MPI(key.d)
    material.p = MPI(key.p)
    material.q = MPI(key.q)
    # OpenPGP wants u = p^-1 mod q, not the PKCS#1 q^-1 mod p.
    material.u = MPI(pow(key.p, -1, key.q))
    material._compute_chksum()


def _fill_ecdsa(packet: PrivKeyV4, key: ECKeyMaterial) -> None:
    try:
        oid, bits = _CURVES[key.curve]
    except KeyError:
        raise EntityBuildError(
            f"Failed to build formated keys: curve {key.curve} has no OpenPGP mapping."
        ) from None
    packet.pkalg = PubKeyAlgorithm.ECDSA
    material = packet.keymaterial
    material.oid = oid
    material.p = ECPoint.from_values(
        bits, ECPointFormat.Standard, MPI(key.x), MPI(key.y)
    )
    material.s = MPI(key.d)
    material._compute_chksum()


def _secret_key_packet(key: AsymmetricKey, created: datetime) -> PrivKeyV4:
    packet = PrivKeyV4()
    try:
        if isinstance(key, RSAKeyMaterial):
            _fill_rsa(packet, key)
        else:
            _fill_ecdsa(packet, key)
    except ValueError as exc:
        raise EntityBuildError(f"Failed to build formated keys: {exc}.") from exc
    packet.created = created
    packet.update_hlen()
    return packet


def build_entity(
    key: AsymmetricKey,
    algorithm: KeyAlgorithm,
    identity: PgpIdentity,
    hash_algorithm: HashAlgorithm = HashAlgorithm.SHA256,
) -> PgpEntity:
    """Wrap ``key`` in a self-signed OpenPGP entity for ``identity``.

    ``algorithm`` is the caller's declaration of what ``key`` is; it must
    agree with the decoded shape.
    """
    if not algorithm.matches(key):
        raise AlgorithmMismatchError(
            f"algorithm '{algorithm.value}' does not match the decoded "
            f"{key.algorithm.value} private key"
        )
    created = openpgp_creation_time(identity.created)

    uid = PGPUID.new(identity.name, email=identity.email)
    pgp_key = PGPKey()
    pgp_key._key = _secret_key_packet(key, created)

    try:
        pgp_key.add_uid(
            uid,
            usage=_KEY_USAGE,
            hashes=_HASH_PREFS,
            ciphers=_CIPHER_PREFS,
            compression=_COMPRESSION_PREFS,
            hash=hash_algorithm,
            created=created,
        )
        public = pgp_key.pubkey
        for public_uid in public.userids:
            if public_uid.selfsig is None or not public.verify(public_uid):
                raise SelfSignatureError(
                    f"self-signature on '{identity.user_id}' does not verify"
                )
    except SelfSignatureError:
        raise
    except Exception as exc:
        raise SelfSignatureError(
            f"Failed to self-sign identity '{identity.user_id}': {exc}"
        ) from exc

    entity = PgpEntity(identity=identity, key=pgp_key)
    logger.debug(
        "Built %s OpenPGP entity %s", algorithm.value, entity.fingerprint
    )
    return entity
