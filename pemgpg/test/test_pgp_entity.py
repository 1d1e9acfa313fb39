from datetime import datetime, timedelta, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from pgpy.constants import PubKeyAlgorithm

from pemgpg.src.errors import (
    AlgorithmMismatchError,
    EntityBuildError,
    SelfSignatureError,
    TimestampParseError,
)
from pemgpg.src.key_decoder import ECKeyMaterial, KeyAlgorithm, decode_private_key
from pemgpg.src.pgp_entity import (
    PgpIdentity,
    build_entity,
    openpgp_creation_time,
)


def utc_naive(value: datetime) -> datetime:
    """Compare times regardless of whether PGPy hands back aware datetimes."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


@pytest.fixture
def identity(fixed_timestamp):
    return PgpIdentity(name="Alice", email="alice@example.com", created=fixed_timestamp)


@pytest.fixture(scope="module")
def rsa_key(rsa_pem):
    return decode_private_key(rsa_pem)


@pytest.fixture(scope="module")
def ec_key(ec_pem):
    return decode_private_key(ec_pem)


class TestBuildEntity:
    def test_rsa_entity(self, rsa_key, identity, fixed_timestamp):
        entity = build_entity(rsa_key, KeyAlgorithm.RSA, identity)

        assert entity.key.key_algorithm is PubKeyAlgorithm.RSAEncryptOrSign
        assert not entity.key.is_public
        assert entity.public_key.is_public
        assert utc_naive(entity.key.created) == utc_naive(fixed_timestamp)

    def test_ec_entity(self, ec_key, identity):
        entity = build_entity(ec_key, KeyAlgorithm.ECDSA, identity)

        assert entity.key.key_algorithm is PubKeyAlgorithm.ECDSA
        assert len(entity.fingerprint) == 40

    def test_fingerprint_is_compact_hex(self, rsa_key, identity):
        entity = build_entity(rsa_key, KeyAlgorithm.RSA, identity)

        assert len(entity.fingerprint) == 40
        assert " " not in entity.fingerprint
        int(entity.fingerprint, 16)

    def test_single_self_signed_user_id(self, rsa_key, identity, fixed_timestamp):
        entity = build_entity(rsa_key, KeyAlgorithm.RSA, identity)

        (uid,) = entity.key.userids
        assert uid.name == "Alice"
        assert uid.email == "alice@example.com"

        (selfsig,) = entity.self_signatures
        assert selfsig is not None
        assert utc_naive(selfsig.created) == utc_naive(fixed_timestamp)

    def test_self_signature_verifies_with_public_half(self, ec_key, identity):
        entity = build_entity(ec_key, KeyAlgorithm.ECDSA, identity)
        public = entity.public_key

        for uid in public.userids:
            assert public.verify(uid)

    def test_fingerprint_is_stable_for_same_inputs(self, ec_key, identity):
        a = build_entity(ec_key, KeyAlgorithm.ECDSA, identity)
        b = build_entity(ec_key, KeyAlgorithm.ECDSA, identity)

        assert a.fingerprint == b.fingerprint

    def test_fingerprint_depends_on_creation_time(self, rsa_key, fixed_timestamp):
        first = PgpIdentity("Alice", "alice@example.com", fixed_timestamp)
        later = PgpIdentity(
            "Alice", "alice@example.com", fixed_timestamp + timedelta(seconds=1)
        )

        assert (
            build_entity(rsa_key, KeyAlgorithm.RSA, first).fingerprint
            != build_entity(rsa_key, KeyAlgorithm.RSA, later).fingerprint
        )

    @pytest.mark.parametrize(
        "key_fixture, algorithm",
        [("rsa_key", KeyAlgorithm.ECDSA), ("ec_key", KeyAlgorithm.RSA)],
    )
    def test_algorithm_mismatch(self, request, identity, key_fixture, algorithm):
        key = request.getfixturevalue(key_fixture)

        with pytest.raises(AlgorithmMismatchError) as excinfo:
            build_entity(key, algorithm, identity)

        assert isinstance(excinfo.value, EntityBuildError)
        assert excinfo.value.stage == "entity"

    def test_unmapped_curve(self, identity):
        key = ECKeyMaterial(curve="sect283k1", x=1, y=2, d=3)

        with pytest.raises(EntityBuildError, match="sect283k1"):
            build_entity(key, KeyAlgorithm.ECDSA, identity)

    def test_brainpool_key_gets_entity_stage(self, ec_pem_for, identity):
        _, pem = ec_pem_for(ec.BrainpoolP512R1())
        key = decode_private_key(pem)

        with pytest.raises(EntityBuildError, match="no OpenPGP mapping"):
            build_entity(key, KeyAlgorithm.ECDSA, identity)

    def test_inconsistent_rsa_material_fails_self_signature(self, rsa_key, identity):
        broken = type(rsa_key)(
            n=rsa_key.n, e=rsa_key.e, d=rsa_key.d + 2, p=rsa_key.p, q=rsa_key.q
        )

        with pytest.raises(SelfSignatureError) as excinfo:
            build_entity(broken, KeyAlgorithm.RSA, identity)

        assert excinfo.value.stage == "self-signature"


class TestIdentity:
    def test_user_id(self, fixed_timestamp):
        identity = PgpIdentity("Alice", "a@example.com", fixed_timestamp)
        assert identity.user_id == "Alice <a@example.com>"

    @pytest.mark.parametrize("name, email", [("", "a@example.com"), ("Alice", "")])
    def test_empty_fields(self, fixed_timestamp, name, email):
        with pytest.raises(ValueError):
            PgpIdentity(name, email, fixed_timestamp)


class TestCreationTime:
    def test_normalized_to_utc_whole_seconds(self):
        local = datetime(
            2024, 1, 2, 5, 4, 5, 987654, tzinfo=timezone(timedelta(hours=2))
        )

        created = openpgp_creation_time(local)

        assert created == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert created.tzinfo == timezone.utc

    def test_naive_datetime_is_rejected(self):
        with pytest.raises(TimestampParseError):
            openpgp_creation_time(datetime(2024, 1, 2, 3, 4, 5))

    @pytest.mark.parametrize(
        "value",
        [
            datetime(1969, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
            datetime(2106, 2, 7, 6, 28, 16, tzinfo=timezone.utc),
        ],
    )
    def test_out_of_range(self, value):
        with pytest.raises(TimestampParseError):
            openpgp_creation_time(value)

    def test_range_bounds_are_accepted(self):
        assert openpgp_creation_time(
            datetime(1970, 1, 1, tzinfo=timezone.utc)
        ).timestamp() == 0
        assert openpgp_creation_time(
            datetime(2106, 2, 7, 6, 28, 15, tzinfo=timezone.utc)
        ).timestamp() == 2**32 - 1

    def test_build_entity_rejects_naive_identity_time(self, rsa_key):
        identity = PgpIdentity("Alice", "a@example.com", datetime(2024, 1, 1))

        with pytest.raises(TimestampParseError):
            build_entity(rsa_key, KeyAlgorithm.RSA, identity)
