"""Disclosures, digest algorithms and salts.

A disclosure is the JSON array ``[salt, key, value]`` (object property) or
``[salt, value]`` (array element), canonically encoded and base64url'd. Its
digest is whatever the configured :class:`Hasher` returns for that string.
"""

import hashlib
import json
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from sdjwt.encoding import b64url_decode, b64url_encode, canonical_json
from sdjwt.errors import ConfigurationError

# Reserved claim names (RFC 9901 §4.2)
SD_DIGESTS_KEY = "_sd"
SD_ALG_KEY = "_sd_alg"
SD_DECOY_KEY = "_sd_decoy"
ARRAY_DIGEST_KEY = "..."

DEFAULT_HASH_ALG = "sha-256"

# IANA "Named Information Hash Algorithm" names
_HASH_FUNCTIONS = {
    "sha-256": hashlib.sha256,
    "sha-384": hashlib.sha384,
    "sha-512": hashlib.sha512,
}


class SaltSource(Protocol):
    def __call__(self) -> str: ...


@dataclass(frozen=True)
class Hasher:
    """A digest callback together with the algorithm name it implements.

    Attributes:
        alg: Algorithm identifier, surfaced to verifiers as ``_sd_alg``.
        callback: Maps an encoded disclosure to its digest string. May return
            an awaitable when packing with :func:`~sdjwt.packer.pack_claims_async`.
    """

    alg: str
    callback: Callable[[str], str | Awaitable[str]]

    def __call__(self, data: str) -> str | Awaitable[str]:
        return self.callback(data)


def get_hasher(alg: str = DEFAULT_HASH_ALG) -> Hasher:
    """Return the built-in hasher for ``alg`` (base64url of the raw digest)."""
    try:
        func = _HASH_FUNCTIONS[alg]
    except KeyError:
        raise ConfigurationError(f"Unsupported hash algorithm: {alg!r}") from None

    def callback(data: str) -> str:
        return b64url_encode(func(data.encode("ascii")).digest())

    return Hasher(alg=alg, callback=callback)


def generate_salt() -> str:
    """Return 128 bits of randomness as a base64url string."""
    return secrets.token_urlsafe(16)


@dataclass(frozen=True)
class Disclosure:
    """One revealed claim: the decoded array plus its encoding and digest.

    ``key`` is ``None`` for array-element disclosures.
    """

    salt: str
    key: str | None
    value: Any
    encoded: str
    digest: str

    @property
    def is_array_element(self) -> bool:
        return self.key is None

    def to_array(self) -> list:
        if self.key is None:
            return [self.salt, self.value]
        return [self.salt, self.key, self.value]


def encode_disclosure(salt: str, key: str | None, value: Any) -> str:
    """Canonically encode a disclosure array as base64url without padding."""
    array = [salt, value] if key is None else [salt, key, value]
    return b64url_encode(canonical_json(array).encode("utf-8"))


def decode_disclosure(encoded: str, hasher: Hasher) -> Disclosure:
    """Parse an encoded disclosure and compute its digest with ``hasher``.

    Raises:
        ValueError: If the string is not a well-formed disclosure.
    """
    try:
        array = json.loads(b64url_decode(encoded))
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Disclosure is not base64url JSON: {e}") from e

    if not isinstance(array, list) or len(array) not in (2, 3):
        raise ValueError(
            "Invalid disclosure format: expected [salt, value] or [salt, name, value]"
        )
    if not isinstance(array[0], str):
        raise ValueError("Invalid disclosure format: salt must be a string")

    if len(array) == 2:
        salt, value = array
        key = None
    else:
        salt, key, value = array
        if not isinstance(key, str):
            raise ValueError("Invalid disclosure format: claim name must be a string")

    digest = hasher.callback(encoded)
    return Disclosure(salt=salt, key=key, value=value, encoded=encoded, digest=digest)
