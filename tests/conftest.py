"""Shared fixtures for sdjwt tests."""

import itertools

import pytest

from sdjwt.disclosure import get_hasher
from sdjwt.issuer import IssuerConfig
from sdjwt.keys import generate_ed25519_keypair, generate_p256_keypair
from sdjwt.signer import JWSSigner


def _counting_salts(prefix: str = "salt"):
    """Salt source returning salt-0, salt-1, ... (deterministic, unique)."""
    counter = itertools.count()
    return lambda: f"{prefix}-{next(counter)}"


def _fixed_salts(*salts: str):
    """Salt source returning exactly ``salts``, then raising StopIteration."""
    it = iter(salts)
    return lambda: next(it)


@pytest.fixture()
def salt_source():
    """Fresh deterministic salt source per test."""
    return _counting_salts()


@pytest.fixture()
def counting_salts():
    """Factory for deterministic salt sources."""
    return _counting_salts


@pytest.fixture()
def fixed_salts():
    """Factory for salt sources that return a fixed sequence."""
    return _fixed_salts


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def p256_keypair():
    return generate_p256_keypair()


@pytest.fixture(scope="session")
def p256_private_key(p256_keypair):
    return p256_keypair[0]


@pytest.fixture(scope="session")
def p256_public_key(p256_keypair):
    return p256_keypair[1]


@pytest.fixture(scope="session")
def ed25519_keypair():
    return generate_ed25519_keypair()


@pytest.fixture(scope="session")
def ed25519_private_key(ed25519_keypair):
    return ed25519_keypair[0]


@pytest.fixture(scope="session")
def ed25519_public_key(ed25519_keypair):
    return ed25519_keypair[1]


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


@pytest.fixture()
def hasher():
    return get_hasher("sha-256")


@pytest.fixture()
def p256_signer(p256_private_key):
    return JWSSigner(p256_private_key)


@pytest.fixture()
def issuer_config(p256_signer, hasher):
    return IssuerConfig(signer=p256_signer, hasher=hasher)


@pytest.fixture()
def person_claims():
    """A claim tree with nested objects and arrays."""
    return {
        "iss": "https://issuer.example.com",
        "iat": 1723972522,
        "given_name": "Erika",
        "family_name": "Mustermann",
        "email": "erika@example.com",
        "address": {
            "street_address": "Heidestraße 17",
            "locality": "Köln",
            "country": "DE",
        },
        "nationalities": ["DE", "FR", "US"],
    }
