"""Tests for SD-JWT issuance (token assembly)."""

import asyncio

import pytest

from sdjwt.disclosure import Hasher
from sdjwt.encoding import decode_json_segment
from sdjwt.errors import ConfigurationError, PackingError, SigningError
from sdjwt.issuer import SD_JWT_TYPE, IssuerConfig, issue_sd_jwt, issue_sd_jwt_async
from sdjwt.keys import public_key_to_jwk

ALICE = {"name": "Alice", "address": {"city": "Wonderland"}}
ALICE_FRAME = {"_sd": ["name"], "address": {"_sd": ["city"]}}


class RecordingSigner:
    """Signer stub that records its inputs and returns a fixed signature."""

    def __init__(self, signature="c2lnbmF0dXJl"):
        self.signature = signature
        self.calls = []

    def __call__(self, header, payload):
        self.calls.append((header, payload))
        return self.signature


class RecordingHasher:
    def __init__(self, inner: Hasher):
        self.alg = inner.alg
        self.inner = inner
        self.calls = []

    def callback(self, data):
        self.calls.append(data)
        return self.inner.callback(data)


def _decode(sd_jwt):
    parts = sd_jwt.split("~")
    header_b64, payload_b64, signature = parts[0].split(".")
    return decode_json_segment(header_b64), decode_json_segment(payload_b64), parts


@pytest.fixture()
def signer():
    return RecordingSigner()


@pytest.fixture()
def config(signer, hasher, salt_source):
    return IssuerConfig(signer=signer, hasher=hasher, salt_source=salt_source)


class TestCompactSerialization:
    def test_basic_example(self, config):
        sd_jwt = issue_sd_jwt({"alg": "ES256"}, ALICE, ALICE_FRAME, config)
        parts = sd_jwt.split("~")
        # issuer-jwt + 2 disclosures + trailing empty KB-JWT slot
        assert len(parts) == 4
        assert parts[-1] == ""
        assert all(parts[1:3])
        assert len(parts[0].split(".")) == 3

    def test_signature_is_third_segment(self, config):
        sd_jwt = issue_sd_jwt({"alg": "ES256"}, ALICE, ALICE_FRAME, config)
        assert sd_jwt.split("~")[0].split(".")[2] == "c2lnbmF0dXJl"

    def test_empty_frame(self, config):
        sd_jwt = issue_sd_jwt({"alg": "ES256"}, ALICE, {}, config)
        header, payload, parts = _decode(sd_jwt)
        assert len(parts) == 2
        assert sd_jwt.endswith("~")
        assert "~" not in sd_jwt[:-1]
        assert payload == ALICE

    def test_payload_is_redacted_claims(self, config, hasher):
        sd_jwt = issue_sd_jwt({"alg": "ES256"}, ALICE, ALICE_FRAME, config)
        _, payload, parts = _decode(sd_jwt)
        name_disclosure, city_disclosure = parts[1:3]
        assert payload["_sd"] == [hasher(name_disclosure)]
        assert payload["address"] == {"_sd": [hasher(city_disclosure)]}
        assert "name" not in payload

    def test_signer_receives_header_and_claims(self, config, signer):
        sd_jwt = issue_sd_jwt({"alg": "ES256"}, ALICE, ALICE_FRAME, config)
        header, payload, _ = _decode(sd_jwt)
        assert signer.calls == [(header, payload)]


class TestHeader:
    def test_default_typ(self, config):
        header, _, _ = _decode(issue_sd_jwt({"alg": "ES256"}, ALICE, {}, config))
        assert header == {"typ": SD_JWT_TYPE, "alg": "ES256"}
        assert SD_JWT_TYPE == "sd-jwt"

    def test_caller_typ_overrides_default(self, config):
        header_in = {"alg": "ES256", "typ": "vc+sd-jwt"}
        header, _, _ = _decode(issue_sd_jwt(header_in, ALICE, {}, config))
        assert header["typ"] == "vc+sd-jwt"

    def test_no_header(self, config):
        header, _, _ = _decode(issue_sd_jwt(None, ALICE, {}, config))
        assert header == {"typ": SD_JWT_TYPE}

    def test_caller_header_not_mutated(self, config):
        header_in = {"alg": "ES256"}
        issue_sd_jwt(header_in, ALICE, {}, config)
        assert header_in == {"alg": "ES256"}


class TestPayloadExtras:
    def test_sd_alg_added_with_disclosures(self, config):
        _, payload, _ = _decode(issue_sd_jwt({}, ALICE, ALICE_FRAME, config))
        assert payload["_sd_alg"] == "sha-256"

    def test_sd_alg_absent_without_digests(self, config):
        _, payload, _ = _decode(issue_sd_jwt({}, ALICE, {}, config))
        assert "_sd_alg" not in payload

    def test_sd_alg_with_decoys_only(self, config):
        _, payload, _ = _decode(issue_sd_jwt({}, ALICE, {"_sd_decoy": 1}, config))
        assert payload["_sd_alg"] == "sha-256"
        assert len(payload["_sd"]) == 1

    def test_sd_alg_can_be_disabled(self, config):
        config.include_sd_alg = False
        _, payload, _ = _decode(issue_sd_jwt({}, ALICE, ALICE_FRAME, config))
        assert "_sd_alg" not in payload

    def test_cnf_attached_in_cleartext(self, config, p256_public_key):
        holder_jwk = public_key_to_jwk(p256_public_key)
        config.cnf = {"jwk": holder_jwk}
        sd_jwt = issue_sd_jwt({}, ALICE, ALICE_FRAME, config)
        _, payload, parts = _decode(sd_jwt)
        assert payload["cnf"] == {"jwk": holder_jwk}
        # cnf is never turned into a disclosure
        assert len(parts) == 4

    def test_cnf_cannot_be_disclosable(self, config):
        config.cnf = {"jwk": {"kty": "EC"}}
        claims = {"cnf": {"kid": "x"}}
        with pytest.raises(ConfigurationError, match="cnf"):
            issue_sd_jwt({}, claims, {"_sd": ["cnf"]}, config)

    def test_cnf_must_be_object(self, config):
        config.cnf = "holder-key"
        with pytest.raises(ConfigurationError, match="cnf must be an object"):
            issue_sd_jwt({}, ALICE, {}, config)


class TestConfigurationErrors:
    def test_missing_signer(self, hasher):
        config = IssuerConfig(signer=None, hasher=hasher)
        with pytest.raises(ConfigurationError, match="Signer"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_signer_not_callable(self, hasher):
        config = IssuerConfig(signer="not-a-function", hasher=hasher)
        with pytest.raises(ConfigurationError, match="Signer"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_missing_hasher(self, signer):
        config = IssuerConfig(signer=signer, hasher=None)
        with pytest.raises(ConfigurationError, match="Hasher callback"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_hasher_callback_not_callable(self, signer):
        config = IssuerConfig(signer=signer, hasher=Hasher("sha-256", None))
        with pytest.raises(ConfigurationError, match="Hasher callback"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_hasher_without_alg(self, signer, hasher):
        config = IssuerConfig(signer=signer, hasher=Hasher("", hasher.callback))
        with pytest.raises(ConfigurationError, match="algorithm identifier"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_fails_before_hashing(self, hasher):
        recording = RecordingHasher(hasher)
        config = IssuerConfig(signer=None, hasher=recording)
        with pytest.raises(ConfigurationError):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)
        assert recording.calls == []

    def test_duck_typed_hasher(self, signer, hasher, salt_source):
        recording = RecordingHasher(hasher)
        config = IssuerConfig(signer=signer, hasher=recording, salt_source=salt_source)
        issue_sd_jwt({}, ALICE, ALICE_FRAME, config)
        assert len(recording.calls) == 2


class TestPackingErrors:
    def test_missing_claim_propagates(self, config, signer):
        with pytest.raises(PackingError, match="missing claim"):
            issue_sd_jwt({}, ALICE, {"_sd": ["email"]}, config)
        assert signer.calls == []


class TestSigningErrors:
    def test_signer_exception_wrapped(self, hasher):
        def failing_signer(header, payload):
            raise RuntimeError("HSM offline")

        config = IssuerConfig(signer=failing_signer, hasher=hasher)
        with pytest.raises(SigningError, match="HSM offline") as exc_info:
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.parametrize("signature", [None, b"bytes", ""])
    def test_signer_returns_non_string(self, hasher, signature):
        config = IssuerConfig(signer=RecordingSigner(signature), hasher=hasher)
        with pytest.raises(SigningError, match="expected a non-empty string"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_signature_with_separator(self, hasher):
        config = IssuerConfig(signer=RecordingSigner("abc~def"), hasher=hasher)
        with pytest.raises(SigningError, match="separator"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)

    def test_async_signer_rejected_by_sync_issue(self, hasher):
        async def async_signer(header, payload):
            return "c2ln"

        config = IssuerConfig(signer=async_signer, hasher=hasher)
        with pytest.raises(SigningError, match="issue_sd_jwt_async"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)


class TestAsyncIssuance:
    def test_async_signer(self, hasher, salt_source):
        async def async_signer(header, payload):
            await asyncio.sleep(0)
            return "YXN5bmM"

        config = IssuerConfig(
            signer=async_signer, hasher=hasher, salt_source=salt_source
        )
        sd_jwt = asyncio.run(issue_sd_jwt_async({}, ALICE, ALICE_FRAME, config))
        parts = sd_jwt.split("~")
        assert parts[0].endswith(".YXN5bmM")
        assert len(parts) == 4

    def test_sync_signer_accepted(self, config):
        sd_jwt = asyncio.run(issue_sd_jwt_async({}, ALICE, ALICE_FRAME, config))
        assert sd_jwt.split("~")[0].endswith(".c2lnbmF0dXJl")

    def test_async_signer_failure_wrapped(self, hasher):
        async def failing_signer(header, payload):
            raise ConnectionError("key store unreachable")

        config = IssuerConfig(signer=failing_signer, hasher=hasher)
        with pytest.raises(SigningError, match="key store unreachable"):
            asyncio.run(issue_sd_jwt_async({}, ALICE, ALICE_FRAME, config))

    def test_async_configuration_error(self, hasher):
        config = IssuerConfig(signer=None, hasher=hasher)
        with pytest.raises(ConfigurationError):
            asyncio.run(issue_sd_jwt_async({}, ALICE, ALICE_FRAME, config))


class TestSignerHeaderHook:
    def test_signer_header_merged(self, hasher):
        signer = RecordingSigner()
        signer.header = lambda: {"alg": "ES256", "kid": "issuer-1"}
        config = IssuerConfig(signer=signer, hasher=hasher)
        header, _, _ = _decode(issue_sd_jwt(None, ALICE, ALICE_FRAME, config))
        assert header == {"typ": SD_JWT_TYPE, "alg": "ES256", "kid": "issuer-1"}

    def test_caller_header_wins(self, hasher):
        signer = RecordingSigner()
        signer.header = lambda: {"alg": "ES256", "kid": "issuer-1"}
        config = IssuerConfig(signer=signer, hasher=hasher)
        sd_jwt = issue_sd_jwt({"kid": "override"}, ALICE, ALICE_FRAME, config)
        header, _, _ = _decode(sd_jwt)
        assert header["kid"] == "override"
        assert header["alg"] == "ES256"

    def test_default_signer_without_header(self, p256_signer, hasher):
        config = IssuerConfig(signer=p256_signer, hasher=hasher)
        header, _, _ = _decode(issue_sd_jwt(None, ALICE, ALICE_FRAME, config))
        assert header == {"typ": SD_JWT_TYPE, **p256_signer.header()}


class TestSerializationErrors:
    def test_nan_claim_in_cleartext(self, config, signer):
        claims = {"name": "Alice", "score": float("nan")}
        with pytest.raises(PackingError, match="not JSON-serializable"):
            issue_sd_jwt({}, claims, {"_sd": ["name"]}, config)
        assert signer.calls == []

    def test_non_json_claim_in_cleartext(self, config, signer):
        claims = {"name": "Alice", "tags": {"a", "b"}}
        with pytest.raises(PackingError, match="not JSON-serializable"):
            issue_sd_jwt({}, claims, {"_sd": ["name"]}, config)
        assert signer.calls == []

    def test_non_json_header(self, config, signer):
        with pytest.raises(ConfigurationError, match="Header is not JSON"):
            issue_sd_jwt({"x5c": object()}, ALICE, {}, config)
        assert signer.calls == []


class TestAsyncHasher:
    @staticmethod
    def _remote(hasher):
        async def kms_hash(data):
            await asyncio.sleep(0)
            return hasher(data)

        return Hasher(alg=hasher.alg, callback=kms_hash)

    def test_async_hasher(self, signer, hasher, counting_salts):
        remote = IssuerConfig(
            signer=signer, hasher=self._remote(hasher), salt_source=counting_salts()
        )
        local = IssuerConfig(signer=signer, hasher=hasher, salt_source=counting_salts())
        sd_jwt = asyncio.run(issue_sd_jwt_async({}, ALICE, ALICE_FRAME, remote))
        assert sd_jwt == issue_sd_jwt({}, ALICE, ALICE_FRAME, local)
        _, payload, _ = _decode(sd_jwt)
        assert payload["_sd_alg"] == "sha-256"

    def test_async_hasher_failure_wrapped(self, signer):
        async def kms_hash(data):
            raise TimeoutError("kms timed out")

        config = IssuerConfig(signer=signer, hasher=Hasher("sha-256", kms_hash))
        with pytest.raises(PackingError, match="kms timed out") as exc_info:
            asyncio.run(issue_sd_jwt_async({}, ALICE, ALICE_FRAME, config))
        assert isinstance(exc_info.value.__cause__, TimeoutError)
        assert signer.calls == []

    def test_sync_issue_rejects_async_hasher(self, signer, hasher):
        config = IssuerConfig(signer=signer, hasher=self._remote(hasher))
        with pytest.raises(PackingError, match="issue_sd_jwt_async"):
            issue_sd_jwt({}, ALICE, ALICE_FRAME, config)
        assert signer.calls == []
